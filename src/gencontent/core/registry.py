"""
Generated-content registry.
[CTX:PBI-1:1-2:REG]

This module collects the files declared by independent generation passes:
- Keeps a table of named targets (output destinations), with one implicit
  default target that always exists
- Keeps one content map per target (output path -> ContentRecord)
- Detects conflicting declarations of the same path between passes
- Hands out GenerationHandle objects bound to one source document

A registry lives for one generation session: create it, let the passes
populate it, synchronize it to disk, then drop it.
"""
import logging
import os
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .errors import (
    ContentConflictError,
    DuplicateTargetError,
    OverwriteConflictError,
    UnknownTargetError,
)
from .workspace import local_path, resolve_root

logger = logging.getLogger(__name__)

DEFAULT_TARGET_NAME = "DEFAULT"
UNKNOWN_DOCUMENT = "document URI undefined"

Content = Union[str, bytes]


@dataclass(frozen=True)
class Target:
    """
    A named output destination.

    Attributes:
        name: Unique target name
        default_overwrite: Overwrite flag used when a declaration does not set one
        clean: If True, synchronizing removes every file the target did not declare
    """
    name: str
    default_overwrite: bool = False
    clean: bool = False


@dataclass(frozen=True)
class ContentRecord:
    """
    One planned output file.

    Attributes:
        content: Exact text or bytes to write
        overwrite: Whether an existing file on disk may be replaced
        source: Description of the generation pass that declared the file
    """
    content: Content
    overwrite: bool
    source: str


@dataclass(frozen=True)
class CreateFileOptions:
    """
    Options for GenerationHandle.create_file().

    Attributes:
        overwrite: Overrides the target's default_overwrite when not None
        target: Target name (or Target); None selects the default target
    """
    overwrite: Optional[bool] = None
    target: Union[str, Target, None] = None


TargetRef = Union[str, Target, None]


# [CTX:PBI-1:1-2:REG] Registry
class GeneratedContentRegistry:
    """
    Collects generated content from any number of generation passes.

    Usage:
        registry = GeneratedContentRegistry(["file:///work/models/"])
        registry.register_target("LIB", default_overwrite=False)

        handle = registry.handle_for("file:///work/models/a.dsl", model=model)
        handle.create_file("src-gen/a.py", "# generated")
        handle.create_file("lib/a.py", "# edit me", CreateFileOptions(target="LIB"))

    All mutating operations are serialized by a single lock, so passes may
    run on several threads against the same registry.
    """

    def __init__(
        self,
        workspace_roots: Optional[Sequence[Any]] = None,
        *,
        default_overwrite: bool = True,
        clean_default: bool = False,
    ):
        """
        Initialize the registry with its implicit default target.

        Args:
            workspace_roots: Roots used to compute document local paths
            default_overwrite: default_overwrite of the implicit default target
            clean_default: clean flag of the implicit default target
        """
        self.workspace_roots = list(workspace_roots) if workspace_roots else []
        self._lock = threading.RLock()
        self._targets: Dict[str, Target] = {}
        self._content: Dict[str, Dict[str, ContentRecord]] = {}
        self._add(Target(DEFAULT_TARGET_NAME, default_overwrite, clean_default))

    @property
    def default_target(self) -> Target:
        return self._targets[DEFAULT_TARGET_NAME]

    def _add(self, target: Target) -> None:
        self._targets[target.name] = target
        self._content[target.name] = {}

    def register_target(
        self,
        name: str,
        default_overwrite: bool = False,
        clean: bool = False,
    ) -> Target:
        """
        Register a new target.

        Args:
            name: Unique target name
            default_overwrite: Overwrite flag for declarations that do not set one
            clean: Whether synchronization removes undeclared files

        Returns:
            The registered Target

        Raises:
            ValueError: If name is empty
            DuplicateTargetError: If name is already registered (including the default)
        """
        if not name:
            raise ValueError("Target name must not be empty.")
        with self._lock:
            if name in self._targets:
                raise DuplicateTargetError(name)
            target = Target(name, default_overwrite, clean)
            self._add(target)
        logger.info(
            f"Registered target {name} (default_overwrite={default_overwrite}, clean={clean})"
        )
        return target

    def resolve_target(self, target: TargetRef = None) -> Target:
        """
        Look up a registered target.

        Args:
            target: Target name or Target; None or "" selects the default target

        Returns:
            The registered Target

        Raises:
            UnknownTargetError: If the name was never registered
        """
        name = target.name if isinstance(target, Target) else target
        if not name:
            return self.default_target
        with self._lock:
            if name not in self._targets:
                raise UnknownTargetError(name, list(self._targets))
            return self._targets[name]

    def targets(self) -> List[Target]:
        """Return all targets in registration order, default first."""
        with self._lock:
            return list(self._targets.values())

    # [CTX:PBI-1:1-3:CONFLICT] Conflict resolution
    def create_file(
        self,
        target: TargetRef,
        path: str,
        content: Content,
        overwrite: bool,
        source: str,
    ) -> None:
        """
        Record a file for a target, rejecting conflicting re-declarations.

        Declaring the same path again with identical content and overwrite flag
        is accepted and leaves the first record in place.

        Args:
            target: Target name or Target (None for the default target)
            path: Output path relative to the target's output root; spellings of
                the same path ("a/b", "./a/b", "a//b") share one record
            content: File content
            overwrite: Resolved overwrite flag
            source: Description of the declaring generation pass

        Raises:
            ValueError: If path is empty
            UnknownTargetError: If target is not registered
            ContentConflictError: If the path was declared with other content
            OverwriteConflictError: If the path was declared with another overwrite flag
        """
        if not path:
            raise ValueError("Output path must not be empty.")
        path = os.path.normpath(path)
        with self._lock:
            resolved = self.resolve_target(target)
            generated = self._content[resolved.name]
            existing = generated.get(path)
            if existing is None:
                generated[path] = ContentRecord(content, overwrite, source)
                logger.debug(f"{resolved.name}: {path} <- {source}")
                return
            if existing.content != content:
                raise ContentConflictError(path, source, existing.source)
            if existing.overwrite != overwrite:
                raise OverwriteConflictError(path, source, existing.source)
        logger.debug(
            f"{resolved.name}: {path} from {source} already generated by {existing.source}"
        )

    def content(self, target: TargetRef = None) -> Mapping[str, ContentRecord]:
        """
        Return a read-only snapshot of a target's content map.

        Raises:
            UnknownTargetError: If target is not registered
        """
        with self._lock:
            resolved = self.resolve_target(target)
            return MappingProxyType(dict(self._content[resolved.name]))

    # [CTX:PBI-1:1-4:HANDLE] Generation handles
    def handle_for(
        self,
        document: Any,
        workspace_roots: Optional[Sequence[Any]] = None,
        *,
        model: Any = None,
    ) -> "GenerationHandle":
        """
        Create a handle for one generation pass.

        Args:
            document: Location of the source document (None if unknown)
            workspace_roots: Candidate roots; defaults to the registry's roots
            model: Parsed model, passed through to the generator untouched

        Returns:
            GenerationHandle whose declarations are attributed to the document
        """
        roots = self.workspace_roots if workspace_roots is None else list(workspace_roots)
        root = resolve_root(document, roots)
        relative = local_path(document, root)
        source = relative or (str(document) if document is not None else "") or UNKNOWN_DOCUMENT
        return GenerationHandle(self, document, model, root, relative, source)


class GenerationHandle:
    """Capability handed to one generation pass; writes into a shared registry."""

    def __init__(
        self,
        registry: GeneratedContentRegistry,
        document: Any,
        model: Any,
        workspace_root: Any,
        local_path: Optional[str],
        source: str,
    ):
        self._registry = registry
        self._document = document
        self._model = model
        self._workspace_root = workspace_root
        self._local_path = local_path
        self._source = source

    @property
    def document(self) -> Any:
        return self._document

    @property
    def model(self) -> Any:
        return self._model

    @property
    def workspace_root(self) -> Any:
        """Root owning the document, or None if it lies outside every root."""
        return self._workspace_root

    @property
    def local_path(self) -> Optional[str]:
        """Document location relative to workspace_root, if one matched."""
        return self._local_path

    @property
    def source(self) -> str:
        """Description used to attribute declarations in conflict messages."""
        return self._source

    def create_file(
        self,
        path: str,
        content: Content,
        options: Optional[CreateFileOptions] = None,
    ) -> None:
        """
        Declare an output file.

        Args:
            path: Output path relative to the target's output root
            content: File content
            options: Target selection and overwrite override

        Raises:
            UnknownTargetError: If options.target is not registered
            ConflictError: If the path conflicts with an earlier declaration
        """
        options = options or CreateFileOptions()
        target = self._registry.resolve_target(options.target)
        overwrite = target.default_overwrite if options.overwrite is None else options.overwrite
        self._registry.create_file(target, path, content, overwrite, self._source)

    def __repr__(self) -> str:
        return f"GenerationHandle(source={self._source!r})"
