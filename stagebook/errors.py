"""Error taxonomy for the Stagebook engine."""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple


class StagebookError(Exception):
    """Base class for engine failures."""


class ContentConfigurationError(StagebookError):
    """Raised when authored content is malformed or references undeclared ids."""

    def __init__(self, message: str, errors: Iterable[str] = ()) -> None:
        self.errors: Tuple[str, ...] = tuple(errors)
        if self.errors:
            message = message + "\n- " + "\n- ".join(self.errors)
        super().__init__(message)


class InvalidChoiceSelection(StagebookError):
    """Raised when the player selects a choice that is disabled or does not exist."""


class SaveError(StagebookError):
    """Base class for save related failures."""


class VersionMismatch(SaveError):
    """Raised when a save is newer than the engine or has no migration path."""


class StructuralLoadError(SaveError):
    """Raised when a save blob does not have the expected shape."""


class SoftlockDetected(StagebookError):
    """Advisory signal raised only when the softlock policy asks to halt."""

    def __init__(self, findings: Sequence[object]) -> None:
        self.findings = tuple(findings)
        summary = "; ".join(str(getattr(f, "message", f)) for f in self.findings)
        super().__init__(f"Softlock detected: {summary}")
