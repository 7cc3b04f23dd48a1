"""
Lead CRM - configuration and shared helpers
"""

import os
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

logger = logging.getLogger("config")

# Load .env
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'leadcrm')

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Shared secret presented by the upstream OAuth handler
IDENTITY_BRIDGE_KEY = os.environ.get('IDENTITY_BRIDGE_KEY', '')

SESSION_TTL_DAYS = int(os.environ.get('SESSION_TTL_DAYS', '7'))
AUDIT_QUEUE_SIZE = int(os.environ.get('AUDIT_QUEUE_SIZE', '1000'))
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

_client: Optional[AsyncIOMotorClient] = None


def get_client() -> AsyncIOMotorClient:
    """Shared Motor client, created on first use"""
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URL)
        logger.info(f"[CONFIG] Using database: {DB_NAME}")
    return _client


def get_database():
    return get_client()[DB_NAME]


def close_client():
    global _client
    if _client is not None:
        _client.close()
        _client = None


# ==================== HELPERS ====================

def generate_token() -> str:
    """Opaque bearer token for a session"""
    return secrets.token_urlsafe(32)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string"""
    return utc_now().isoformat()
