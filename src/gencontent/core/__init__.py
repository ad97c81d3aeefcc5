"""Core types for collecting generated content and writing it to disk."""

from gencontent.core.config import (
    GeneratorConfig,
    TargetConfig,
    load_config,
    validate_config,
)
from gencontent.core.errors import (
    ConfigValidationError,
    ConflictError,
    ContentConflictError,
    DuplicateTargetError,
    GenerationError,
    OverwriteConflictError,
    SharedOutputRootError,
    TargetError,
    UnknownTargetError,
)
from gencontent.core.registry import (
    DEFAULT_TARGET_NAME,
    ContentRecord,
    CreateFileOptions,
    GeneratedContentRegistry,
    GenerationHandle,
    Target,
)
from gencontent.core.session import GenerationSession, SourceDocument
from gencontent.core.synchronizer import DiskSynchronizer, SyncReport
from gencontent.core.telemetry import (
    SyncAction,
    SyncEvent,
    SyncStats,
    TelemetryLevel,
    TelemetryRecorder,
    get_recorder,
    set_recorder,
)
from gencontent.core.workspace import local_path, resolve_root

__all__ = [
    # config
    "GeneratorConfig",
    "TargetConfig",
    "load_config",
    "validate_config",
    # errors
    "ConfigValidationError",
    "ConflictError",
    "ContentConflictError",
    "DuplicateTargetError",
    "GenerationError",
    "OverwriteConflictError",
    "SharedOutputRootError",
    "TargetError",
    "UnknownTargetError",
    # registry
    "DEFAULT_TARGET_NAME",
    "ContentRecord",
    "CreateFileOptions",
    "GeneratedContentRegistry",
    "GenerationHandle",
    "Target",
    # session
    "GenerationSession",
    "SourceDocument",
    # synchronizer
    "DiskSynchronizer",
    "SyncReport",
    # telemetry
    "SyncAction",
    "SyncEvent",
    "SyncStats",
    "TelemetryLevel",
    "TelemetryRecorder",
    "get_recorder",
    "set_recorder",
    # workspace
    "local_path",
    "resolve_root",
]
