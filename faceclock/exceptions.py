class ClockError(Exception):
    """Base exception for the attendance clock."""


class PerceptionError(ClockError):
    """Raised when a frame source, detector or embedder call does not produce a result."""


class PerceptionTimeout(PerceptionError):
    """Raised when a perception call exceeds its deadline."""


class PerceptionFailure(PerceptionError):
    """Raised when a perception collaborator raises an error."""


class StoreIOFailure(ClockError):
    """Raised when the profile store cannot read or persist a collection."""


class ValidationError(ClockError):
    """Raised when enrollment or configuration input is invalid."""


class DuplicateIdentityError(ValidationError):
    """Raised when enrolling an external id that is already in use."""


class IdentityNotFoundError(ClockError):
    """Raised when an operation targets an identity that does not exist."""


class CameraError(ClockError):
    """Raised when the webcam cannot be opened."""
