"""
Dependency graph builder.

Walks the import tables of a binary and everything it (transitively)
imports, without loading any of them. Modules are memoized by canonical
name, so cycles terminate and shared dependencies are expanded once.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

from .dependency_graph import DependencyGraph
from .error_handling import (
    ErrorCategory,
    ExtractionError,
    RootBinaryError,
    get_error_handler,
    log_extraction_error,
    log_module_not_found,
)
from .import_extractor import ImportExtractor
from .module import Module, ModuleStatus, canonicalize
from .path_resolver import PathResolver, is_api_set_name, is_system_path
from .structured_logging import (
    get_builder_logger,
    log_build_complete,
    log_build_start,
    log_module_unresolved,
)


@dataclass
class _BuildState:
    """Mutable bookkeeping for a single build; never exposed."""

    queue: "asyncio.Queue[str]"
    discovered: Set[str] = field(default_factory=set)
    finalized: Dict[str, Module] = field(default_factory=dict)
    imports: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    dropped: bool = False  # Discovery was refused (limit reached or cancelled)


class DependencyGraphBuilder:
    """
    Builds a DependencyGraph rooted at a binary.

    Extraction for independent modules runs concurrently on a fixed pool of
    worker tasks draining one queue. All graph bookkeeping happens on the
    event loop between awaits, so the visited claim is atomic.
    """

    def __init__(
        self,
        path_resolver: PathResolver,
        import_extractor: ImportExtractor,
        max_concurrent: int = 8,
        timeout_seconds: float = 30.0,
        max_modules: int = 5000,
        skip_system: bool = False,
    ):
        """
        Initialize builder.

        Args:
            path_resolver: Locates modules by name
            import_extractor: Reads a binary's direct imports
            max_concurrent: Number of extractions allowed in flight
            timeout_seconds: Per-extraction time limit
            max_modules: Stop discovering new modules past this count
            skip_system: Ignore API sets and do not expand OS modules
        """
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")

        self.path_resolver = path_resolver
        self.import_extractor = import_extractor
        self.max_concurrent = max_concurrent
        self.timeout_seconds = timeout_seconds
        self.max_modules = max_modules
        self.skip_system = skip_system
        self.error_handler = get_error_handler()
        self._cancelled = False

    def cancel(self) -> None:
        """Stop dispatching new work; the running build returns what is finalized."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def build(self, root_path: Union[str, Path]) -> DependencyGraph:
        """
        Resolve the full dependency closure of ``root_path``.

        Args:
            root_path: Executable or library to analyze

        Returns:
            DependencyGraph: Immutable graph rooted at the binary

        Raises:
            RootBinaryError: If the root binary cannot be read
        """
        root = self._validate_root_path(root_path)
        root_name = canonicalize(root.name)
        start_time = time.monotonic()
        build_id = f"build_{uuid.uuid4().hex[:12]}"
        log_build_start(build_id, str(root), self.max_concurrent)

        state = _BuildState(queue=asyncio.Queue())
        state.discovered.add(root_name)

        try:
            root_imports = await self._extract_imports(root)
        except Exception as e:
            self.error_handler.error(
                ErrorCategory.FILESYSTEM,
                f"Cannot read imports of root binary: {e}",
                "dependency_resolver",
                "build",
                exception=e,
                details={"root_path": str(root)},
            )
            raise RootBinaryError(f"Cannot read imports of {root}: {e}") from e

        self._record_resolved(state, root_name, root, root_imports)

        workers = [
            asyncio.create_task(self._worker(state))
            for _ in range(self.max_concurrent)
        ]
        try:
            await state.queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        graph = self._assemble(state, root_name)
        log_build_complete(
            duration_ms=int((time.monotonic() - start_time) * 1000),
            total_modules=len(graph),
            total_edges=len(graph.edges),
            unresolved_count=len(graph.unresolved_modules),
            complete=graph.complete,
        )
        return graph

    def _validate_root_path(self, root_path: Union[str, Path]) -> Path:
        path = Path(root_path)
        if not path.exists():
            raise RootBinaryError(f"File does not exist: {path}")
        if not path.is_file():
            raise RootBinaryError(f"Path is not a file: {path}")
        return path

    async def _worker(self, state: _BuildState) -> None:
        while True:
            name = await state.queue.get()
            try:
                # Memo hit or cancelled: nothing to extract
                if name not in state.finalized and not self._cancelled:
                    try:
                        await self._process_module(state, name)
                    except Exception as e:
                        self._fail_unexpectedly(state, name, e)
            finally:
                state.queue.task_done()

    async def _process_module(self, state: _BuildState, name: str) -> None:
        # Directory listings hit the file system; keep them off the event loop
        try:
            path = await asyncio.to_thread(self.path_resolver.resolve, name)
        except Exception as e:
            self._fail_unexpectedly(state, name, e)
            return

        if path is None:
            self._finalize(state, Module(name=name, status=ModuleStatus.NOT_FOUND))
            log_module_not_found(name)
            log_module_unresolved(name, ModuleStatus.NOT_FOUND.value)
            return

        if self.skip_system and is_system_path(path):
            self._finalize(
                state,
                Module(
                    name=name,
                    status=ModuleStatus.RESOLVED,
                    resolved_path=path,
                    is_system=True,
                ),
            )
            return

        try:
            imported = await self._extract_imports(path)
        except ExtractionError as e:
            self._finalize(
                state,
                Module(
                    name=name,
                    status=ModuleStatus.EXTRACTION_FAILED,
                    resolved_path=path,
                    error=str(e),
                ),
            )
            log_extraction_error(name, str(path), exception=e)
            log_module_unresolved(name, ModuleStatus.EXTRACTION_FAILED.value)
            return
        except Exception as e:
            self._fail_unexpectedly(state, name, e, resolved_path=path)
            return

        self._record_resolved(state, name, path, imported)

    async def _extract_imports(self, path: Path) -> List[str]:
        """Run the extractor under the timeout and validate what it returns."""
        try:
            imported = await asyncio.wait_for(
                self.import_extractor.extract(path), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise ExtractionError(
                f"Timed out after {self.timeout_seconds}s", file_path=str(path)
            )

        if not isinstance(imported, (list, tuple)) or not all(
            isinstance(item, str) for item in imported
        ):
            raise ExtractionError(
                f"Malformed extractor output: {type(imported).__name__}",
                file_path=str(path),
            )
        return list(imported)

    def _record_resolved(
        self, state: _BuildState, name: str, path: Path, imported: List[str]
    ) -> None:
        children: List[str] = []
        for raw_name in imported:
            child = canonicalize(raw_name)
            if not child or child in children:
                continue
            if self.skip_system and is_api_set_name(child):
                continue
            children.append(child)
            self._discover(state, child)

        state.imports[name] = tuple(children)
        self._finalize(
            state, Module(name=name, status=ModuleStatus.RESOLVED, resolved_path=path)
        )

    def _discover(self, state: _BuildState, name: str) -> None:
        # Check and mark with no await in between: the first claim wins
        if name in state.discovered:
            return
        if self._cancelled or len(state.discovered) >= self.max_modules:
            if not state.dropped:
                get_builder_logger().warning(
                    "discovery_stopped",
                    reason="cancelled" if self._cancelled else "max_modules",
                    max_modules=self.max_modules,
                )
            state.dropped = True
            return
        state.discovered.add(name)
        state.queue.put_nowait(name)

    def _fail_unexpectedly(
        self,
        state: _BuildState,
        name: str,
        exception: Exception,
        resolved_path: Optional[Path] = None,
    ) -> None:
        """Collaborator raised something other than ExtractionError."""
        self.error_handler.error(
            ErrorCategory.EXTRACTION,
            f"Unexpected failure while processing {name}: {exception}",
            "dependency_resolver",
            "_process_module",
            exception=exception,
            details={"module_name": name},
        )
        if name not in state.finalized:
            self._finalize(
                state,
                Module(
                    name=name,
                    status=ModuleStatus.EXTRACTION_FAILED,
                    resolved_path=resolved_path,
                    error=f"{type(exception).__name__}: {exception}",
                ),
            )

    def _finalize(self, state: _BuildState, module: Module) -> None:
        # A status is assigned exactly once
        if module.name in state.finalized:
            raise RuntimeError(f"Module {module.name!r} finalized twice")
        state.finalized[module.name] = module
        state.imports.setdefault(module.name, ())

    def _assemble(self, state: _BuildState, root_name: str) -> DependencyGraph:
        modules = dict(state.finalized)
        imports = {
            name: tuple(child for child in children if child in modules)
            for name, children in state.imports.items()
            if name in modules
        }
        complete = not state.dropped and len(modules) == len(state.discovered)
        return DependencyGraph(
            root=root_name, module_map=modules, imports=imports, complete=complete
        )


async def build_dependency_graph(
    root_path: Union[str, Path],
    path_resolver: PathResolver,
    import_extractor: ImportExtractor,
    max_concurrent: int = 8,
    timeout_seconds: float = 30.0,
    max_modules: int = 5000,
    skip_system: bool = False,
) -> DependencyGraph:
    """
    Convenience function to build the dependency graph of a binary.

    Args:
        root_path: Executable or library to analyze
        path_resolver: Locates modules by name
        import_extractor: Reads a binary's direct imports
        max_concurrent: Number of extractions allowed in flight
        timeout_seconds: Per-extraction time limit
        max_modules: Upper bound on modules discovered
        skip_system: Ignore API sets and do not expand OS modules

    Returns:
        Complete dependency graph
    """
    builder = DependencyGraphBuilder(
        path_resolver,
        import_extractor,
        max_concurrent=max_concurrent,
        timeout_seconds=timeout_seconds,
        max_modules=max_modules,
        skip_system=skip_system,
    )
    return await builder.build(root_path)
