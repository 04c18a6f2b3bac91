class ProfilerError(Exception):
    """Base class for profiler errors."""


class IllegalStateError(ProfilerError):
    """Raised when an operation is not allowed in the engine's current state."""
