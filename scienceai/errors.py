"""Exception types shared by the usage and citation services."""

from __future__ import annotations


class ScienceAIError(Exception):
    """Base class for errors raised by the core services."""
    pass


class ValidationError(ScienceAIError):
    """Malformed input from a caller."""
    pass


class NotFoundError(ScienceAIError):
    """Requested user or record does not exist."""
    pass


class UnknownStyleError(ValidationError):
    """Citation style identifier is not one of the supported styles."""

    def __init__(self, style: object):
        super().__init__(f"Unknown citation style: {style!r}")
        self.style = style


class MalformedSourceError(ValidationError):
    """Source record is missing a mandatory field."""
    pass


class SearchProviderError(ScienceAIError):
    """Error from an external bibliographic search API."""
    pass
