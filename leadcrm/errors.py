"""
Lead CRM - Error kinds

Raised by services, translated to HTTP responses in server.py.
"""

from typing import Any, List, Optional


class CRMError(Exception):
    status_code = 400

    def __init__(self, detail: Any = None):
        self.detail = detail if detail is not None else self.__class__.__name__
        super().__init__(str(self.detail))


class ValidationError(CRMError):
    """Malformed or out-of-range input. `errors` holds field-level messages."""
    status_code = 422

    def __init__(self, detail: Any = None, errors: Optional[List[dict]] = None):
        super().__init__(detail or "Invalid input")
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        fields = ", ".join(e["field"] for e in errors if e["field"])
        return cls(f"Invalid fields: {fields}" if fields else "Invalid input", errors)


class ConflictError(CRMError):
    status_code = 409


class NotFoundError(CRMError):
    """Also raised for records owned by another tenant."""
    status_code = 404


class ForbiddenError(CRMError):
    status_code = 403
