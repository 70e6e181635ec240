import logging
from fastapi import HTTPException
from typing import NoReturn, Optional

logger = logging.getLogger(__name__)


class AssessmentError(Exception):
    """Base class for domain errors raised by the grading and session services."""
    status_code = 400
    error = "assessment_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AssessmentError):
    status_code = 404
    error = "not_found"


class AccessDeniedError(AssessmentError):
    status_code = 403
    error = "access_denied"


class AlreadyCompletedError(AssessmentError):
    status_code = 403
    error = "already_completed"


class ChancesExhaustedError(AssessmentError):
    status_code = 403
    error = "chances_exhausted"


class SessionExpiredError(AssessmentError):
    status_code = 410
    error = "session_expired"


class InvalidSessionStateError(AssessmentError):
    status_code = 409
    error = "invalid_session_state"


class ValidationFailedError(AssessmentError):
    status_code = 400
    error = "validation_failed"


class UnsupportedLanguageError(AssessmentError):
    status_code = 400
    error = "unsupported_language"


def raise_for_domain_error(exc: AssessmentError) -> NoReturn:
    """Translate a domain error into an HTTPException with a stable error code."""
    logger.info("%s: %s", exc.error, exc.message)
    raise HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.error, "message": exc.message},
    ) from exc


def safe_raise_http(user_message: str, exc: Optional[Exception] = None, status_code: int = 500) -> NoReturn:
    """
    Log the full exception server-side and raise a generic HTTPException for clients.

    - user_message: short, non-sensitive message returned to client
    - exc: optional exception instance; full details are logged with stack trace
    - status_code: HTTP status code to raise
    """
    if exc is not None:
        logger.exception("%s: %s", user_message, exc)
    else:
        logger.error(user_message)
    raise HTTPException(status_code=status_code, detail=user_message)

