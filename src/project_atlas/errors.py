"""Exception types shared across the store, tools and protocol server."""


class AtlasError(Exception):
    """Base class for project atlas failures."""


class NotFoundError(AtlasError):
    """Raised when a referenced project, quest or task does not resolve."""


class ValidationError(AtlasError):
    """Raised when a tool argument is missing or has the wrong type."""


class DecodeError(AtlasError):
    """Raised when a persisted row does not have the expected shape."""


class FramingError(AtlasError):
    """Raised when a message header has no usable Content-Length."""


class AdvisorUnavailable(AtlasError):
    """Raised inside the advisor bridge when the external service cannot help."""
