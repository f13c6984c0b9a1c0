class LasError(Exception):
    """Base class for errors raised by the toolkit."""

    pass


class CacheLayerError(LasError):
    """Raised when an external cache layer (Redis, transient files) fails."""

    pass


class RequestError(LasError):
    """Raised by AJAX handlers to answer with an error envelope."""

    def __init__(self, message: str, code: str = "generic_error", **extra):
        super().__init__(message)
        self.message = message
        self.code = code
        self.extra = extra


class MissingDependency(LasError):
    """A check could not run because a file, tool or service is absent."""

    pass


class FatalCheckError(LasError):
    """Mandatory tooling is missing; the whole validation run is aborted."""

    pass
