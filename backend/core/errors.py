"""Exception hierarchy for the indoor map engine."""


class IndoorMapError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(IndoorMapError):
    """Building configuration is missing or invalid."""


class ImageDecodeError(IndoorMapError):
    """Floor-plan image could not be decoded by any decode path."""


class TransportError(IndoorMapError):
    """A platform API call failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SaveError(IndoorMapError):
    """A user-initiated save or delete failed."""
