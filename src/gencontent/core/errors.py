"""
Error taxonomy for generated-content collection and synchronization.
[CTX:PBI-1:1-1:ERR]

Two families are kept apart so callers can decide what is recoverable:

- ``TargetError``: misuse of the target table by the driver (duplicate or
  unknown target names). Usually a programming error.
- ``ConflictError``: two generation passes declared the same output path with
  different content or a different overwrite flag. The session must stop.

I/O failures during synchronization are not wrapped; the underlying
``OSError`` reaches the caller with ``filename`` set.
"""
from pathlib import Path
from typing import Sequence


class GenerationError(Exception):
    """Base error for all generated-content failures."""


# [CTX:PBI-1:1-1:ERR] Target table misuse
class TargetError(GenerationError):
    """Errors raised while registering or resolving targets."""

    def __init__(self, message: str, target_name: str):
        super().__init__(message)
        self.target_name = target_name


class DuplicateTargetError(TargetError):
    """A target with the same name has already been registered."""

    def __init__(self, target_name: str):
        super().__init__(f'Target "{target_name}" has already been added', target_name)


class UnknownTargetError(TargetError):
    """A target name was used that was never registered."""

    def __init__(self, target_name: str, registered: Sequence[str] = ()):
        self.registered = sorted(registered)
        supported = ", ".join(self.registered) or "<none>"
        super().__init__(
            f'Target "{target_name}" is not registered. Registered targets: {supported}',
            target_name,
        )


# [CTX:PBI-1:1-1:ERR] Conflicts between generation passes
class ConflictError(GenerationError):
    """
    Two declarations for the same output path disagree.

    Attributes:
        path: Output path both declarations refer to
        source: Source description of the rejected declaration
        existing_source: Source description of the recorded declaration
    """

    reason = "different content"

    def __init__(self, path: str, source: str, existing_source: str):
        self.path = path
        self.source = source
        self.existing_source = existing_source
        super().__init__(
            f'Conflict generating file "{path}" from "{source}": '
            f'A file with {self.reason} was already generated from "{existing_source}".'
        )


class ContentConflictError(ConflictError):
    """Same path declared twice with different content."""

    reason = "different content"


class OverwriteConflictError(ConflictError):
    """Same path and content declared twice with a different overwrite flag."""

    reason = "different overwrite flag"


class SharedOutputRootError(GenerationError):
    """
    A clean target would share its output root with another target.

    The clean pass deletes everything it does not own, so a clean target needs
    an output root that no other target writes into (equal, parent or child).
    """

    def __init__(self, output_root: Path, target_name: str, other_target_name: str, other_root: Path):
        self.output_root = output_root
        self.target_name = target_name
        self.other_target_name = other_target_name
        self.other_root = other_root
        super().__init__(
            f'Output root "{output_root}" of target "{target_name}" overlaps with '
            f'"{other_root}" of target "{other_target_name}"; '
            f"a clean target requires a dedicated output root"
        )


class ConfigValidationError(GenerationError, ValueError):
    """Raised when a generation configuration is invalid."""
