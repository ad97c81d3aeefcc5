"""
Generation session driver.
[CTX:PBI-1:1-8:SESSION]

Ties the pieces together for one run:
1. Build a registry with every configured target
2. Run one generation pass per source document
3. Synchronize each target with an output directory to disk

Passes run one after another. A conflict raised by a pass stops the session
before anything is written.
"""
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

from .config import GeneratorConfig
from .registry import GeneratedContentRegistry, GenerationHandle
from .synchronizer import DiskSynchronizer, PathLike, SyncReport
from .telemetry import TelemetryRecorder

logger = logging.getLogger(__name__)


@dataclass
class SourceDocument:
    """
    Input of one generation pass.

    Attributes:
        uri: Document location (string, path or URI-like object)
        model: Parsed model handed to the generator untouched
    """
    uri: Any
    model: Any = None


Generator = Callable[[GenerationHandle], Union[None, Awaitable[None]]]


class GenerationSession:
    """
    One generation session: collect content from all passes, then write it.

    Example:
        session = GenerationSession(load_config())
        session.run(documents, generate)
        reports = session.sync_all(base_dir=project_dir)
    """

    def __init__(
        self,
        config: Optional[GeneratorConfig] = None,
        *,
        recorder: Optional[TelemetryRecorder] = None,
    ):
        """
        Initialize session.

        Args:
            config: Session configuration (defaults to GeneratorConfig())
            recorder: Telemetry recorder for the synchronizer
        """
        self.config = config or GeneratorConfig()
        self.registry = GeneratedContentRegistry(
            self.config.workspace_roots,
            default_overwrite=self.config.default_target.default_overwrite,
            clean_default=self.config.default_target.clean,
        )
        for target in self.config.targets.values():
            self.registry.register_target(target.name, target.default_overwrite, target.clean)
        self.synchronizer = DiskSynchronizer(
            self.registry,
            max_concurrency=self.config.max_concurrency,
            recorder=recorder,
        )

    def handle_for(self, document: SourceDocument) -> GenerationHandle:
        return self.registry.handle_for(document.uri, model=document.model)

    def run(self, documents: Iterable[SourceDocument], generator: Generator) -> int:
        """
        Run generator once per document.

        Args:
            documents: Source documents, one pass each
            generator: Called with the pass's GenerationHandle

        Returns:
            Number of passes run

        Raises:
            TypeError: If generator is a coroutine function or returns an
                awaitable (use run_async)
            GenerationError: The first error raised by a pass
        """
        if inspect.iscoroutinefunction(generator):
            raise TypeError("Coroutine generators require run_async()")
        count = 0
        for document in documents:
            handle = self.handle_for(document)
            logger.debug(f"Generating from {handle.source}")
            result = generator(handle)
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise TypeError(
                    f"Generator returned an awaitable for {handle.source}; use run_async()"
                )
            count += 1
        logger.info(f"Completed {count} generation passes")
        return count

    async def run_async(self, documents: Iterable[SourceDocument], generator: Generator) -> int:
        """
        Run generator once per document, awaiting each pass before the next.

        The generator may be a coroutine function or a plain callable.
        """
        count = 0
        for document in documents:
            handle = self.handle_for(document)
            logger.debug(f"Generating from {handle.source}")
            result = generator(handle)
            if inspect.isawaitable(result):
                await result
            count += 1
        logger.info(f"Completed {count} generation passes")
        return count

    def _output_targets(self, base_dir: Optional[PathLike]) -> Dict[str, Path]:
        base = Path(base_dir) if base_dir is not None else Path.cwd()
        outputs: Dict[str, Path] = {}
        for target in self.config.all_targets():
            if target.output_dir is None:
                logger.debug(f"Target {target.name} has no output_dir, not synchronized")
                continue
            outputs[target.name] = base / target.output_dir
        return outputs

    def sync_all(self, base_dir: Optional[PathLike] = None) -> Dict[str, SyncReport]:
        """
        Synchronize every target that has an output directory.

        Args:
            base_dir: Directory relative output dirs are resolved against
                (defaults to the current directory)

        Returns:
            SyncReport per target name
        """
        return {
            name: self.synchronizer.sync(root, name)
            for name, root in self._output_targets(base_dir).items()
        }

    async def sync_all_async(self, base_dir: Optional[PathLike] = None) -> Dict[str, SyncReport]:
        """Asynchronous variant of sync_all(); targets are synchronized in turn."""
        reports: Dict[str, SyncReport] = {}
        for name, root in self._output_targets(base_dir).items():
            reports[name] = await self.synchronizer.sync_async(root, name)
        return reports
