"""Exceptions raised by the game data services."""


class ServiceError(Exception):
    """Base class for every error raised by a service."""


class NotFoundError(ServiceError, LookupError):
    """The requested record does not exist."""


class ValidationError(ServiceError, ValueError):
    """The request breaks a business rule or carries invalid arguments."""


class StorageError(ServiceError):
    """The data access layer failed; the original exception is the cause."""