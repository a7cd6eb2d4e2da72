"""Session error taxonomy."""

from __future__ import annotations


class SketchcodeError(RuntimeError):
    """Base class for generation session errors."""


class SessionBusyError(SketchcodeError):
    def __init__(self, message: str = "A generation is already in progress.") -> None:
        super().__init__(message)


class NoCurrentVersionError(SketchcodeError):
    def __init__(self, message: str = "No current version set. Create a version before requesting an update.") -> None:
        super().__init__(message)


class IndexOutOfRangeError(SketchcodeError, IndexError):
    def __init__(self, index: int, length: int) -> None:
        self.index = index
        self.length = length
        super().__init__(f"Version index {index} out of range (history has {length} versions).")


class TransportError(SketchcodeError):
    """Underlying channel failure: network loss, upstream rejection, bad frames."""


class UserCancelled(SketchcodeError):
    def __init__(self, reason: str = "user") -> None:
        self.reason = reason
        super().__init__(f"Generation cancelled ({reason}).")


class IllegalTransitionError(SketchcodeError):
    def __init__(self, phase: str, event_type: str) -> None:
        self.phase = phase
        self.event_type = event_type
        super().__init__(f"Transport event '{event_type}' is not accepted in phase '{phase}'.")
