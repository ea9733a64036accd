# services/errors.py


class NotFoundError(ValueError):
    """Requested resource does not exist (or belongs to another user)."""


class ConflictError(ValueError):
    """Request collides with existing state, e.g. a duplicate name."""


class ExternalServiceError(RuntimeError):
    """Upstream dependency (LLM, market data) failed or returned garbage."""
