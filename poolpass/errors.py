from typing import Any, Dict, List, Optional


class ConfigError(RuntimeError):
    """Raised at startup when required configuration is missing."""


class PoolPassError(Exception):
    status_code = 500
    message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"message": self.message}
        out.update(self.extra)
        return out


class ValidationError(PoolPassError):
    status_code = 400
    message = "Invalid data"

    def __init__(self, message: Optional[str] = None,
                 errors: Optional[List[Dict[str, str]]] = None) -> None:
        if errors:
            super().__init__(message, errors=errors)
        else:
            super().__init__(message)
        self.errors = errors or []


class AuthenticationError(PoolPassError):
    status_code = 401
    message = "Unauthorized"


class NotFoundError(PoolPassError):
    status_code = 404
    message = "Ticket not found"


class CorroborationMismatch(PoolPassError):
    """Provider data disagrees with the stored ticket; nothing was changed."""
    status_code = 400
    message = "Verification mismatch"

    def __init__(self, message: Optional[str] = None, ticket=None) -> None:
        if ticket is not None:
            super().__init__(message, ticket=ticket.to_dict())
        else:
            super().__init__(message)
        self.ticket = ticket


class UpstreamError(PoolPassError):
    status_code = 500
    message = "Payment gateway request failed"


class ArtifactGenerationError(PoolPassError):
    status_code = 500
    message = "Failed to generate ticket PDF"


class DuplicateTicketError(PoolPassError):
    status_code = 409
    message = "Ticket already exists"
