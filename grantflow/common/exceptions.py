# grantflow/common/exceptions.py


class GrantFlowException(Exception):
    """Base exception for the grantflow library."""

    pass


class StoreError(GrantFlowException):
    """Raised when the job store cannot be reached or rejects an operation."""

    pass


class HandlerNotFoundError(GrantFlowException):
    """Raised when no handler is registered for a job's type. Never retried."""

    retryable = False


class JobTimeoutError(GrantFlowException):
    """Raised when a handler runs past its deadline."""

    pass


class ConfigurationError(GrantFlowException):
    """Raised for invalid engine or scheduler settings."""

    pass
