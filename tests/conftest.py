"""
Shared fixtures for dll-depends tests.
Provides in-memory collaborators so graphs can be built without real binaries.
"""

import asyncio
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from dll_depends.dependency_resolver import DependencyGraphBuilder
from dll_depends.error_handling import ExtractionError, setup_error_handling
from dll_depends.import_extractor import ImportExtractor
from dll_depends.module import canonicalize
from dll_depends.path_resolver import PathResolver


class FakePathResolver(PathResolver):
    """Resolves every known module to ``base_dir / name``."""

    def __init__(self, base_dir: Path, present: Iterable[str], overrides=None):
        self.base_dir = base_dir
        self.present = {canonicalize(name) for name in present}
        self.overrides = {canonicalize(k): Path(v) for k, v in (overrides or {}).items()}
        self.calls: List[str] = []

    def resolve(self, module_name: str) -> Optional[Path]:
        key = canonicalize(module_name)
        self.calls.append(key)
        if key in self.overrides:
            return self.overrides[key]
        if key in self.present:
            return self.base_dir / key
        return None


class FakeImportExtractor(ImportExtractor):
    """Returns canned import lists keyed by the file name being inspected."""

    def __init__(
        self,
        imports: Dict[str, List[str]],
        failing: Iterable[str] = (),
        hanging: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.imports = {canonicalize(k): list(v) for k, v in imports.items()}
        self.failing = {canonicalize(name) for name in failing}
        self.hanging = {canonicalize(name) for name in hanging}
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def get_backend(self) -> str:
        return "fake"

    async def extract(self, file_path: Path) -> List[str]:
        name = canonicalize(Path(file_path).name)
        self.calls.append(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if name in self.hanging:
                await asyncio.sleep(3600)
            if name in self.failing:
                raise ExtractionError(f"invalid PE image: {name}", file_path=str(file_path))
            return list(self.imports.get(name, []))
        finally:
            self.in_flight -= 1


@pytest.fixture(autouse=True)
def fresh_state():
    """Give each test its own error handler."""
    return setup_error_handling()


@pytest.fixture
def temp_dir(tmp_path):
    """Create temporary directory for test files."""
    return tmp_path


@pytest.fixture
def make_builder(tmp_path):
    """
    Factory building a builder over fake collaborators.

    ``imports`` maps module names to the names they import. Every module in
    ``imports`` (and every imported name not in ``missing``) resolves.
    """

    def _make(
        imports: Dict[str, List[str]],
        root: str = "app.exe",
        missing: Iterable[str] = (),
        failing: Iterable[str] = (),
        hanging: Iterable[str] = (),
        delay: float = 0.0,
        overrides=None,
        **builder_kwargs,
    ):
        root_path = tmp_path / root
        root_path.write_bytes(b"MZ")

        missing_keys = {canonicalize(name) for name in missing}
        known = set(imports)
        for names in imports.values():
            known.update(names)
        present = [name for name in known if canonicalize(name) not in missing_keys]

        resolver = FakePathResolver(tmp_path, present, overrides=overrides)
        extractor = FakeImportExtractor(
            imports, failing=failing, hanging=hanging, delay=delay
        )
        builder = DependencyGraphBuilder(resolver, extractor, **builder_kwargs)
        return builder, extractor, root_path

    return _make


@pytest.fixture
def diamond_imports():
    """R imports A and B, both of which import C."""
    return {
        "app.exe": ["A.dll", "B.dll"],
        "a.dll": ["C.dll"],
        "b.dll": ["C.dll"],
        "c.dll": [],
    }


SAMPLE_DUMPBIN_OUTPUT = """Microsoft (R) COFF/PE Dumper Version 14.38.33130.0
Copyright (C) Microsoft Corporation.  All rights reserved.


Dump of file C:\\app\\app.exe

File Type: EXECUTABLE IMAGE

  Image has the following dependencies:

    KERNEL32.dll
    USER32.dll
    VCRUNTIME140.dll
    api-ms-win-crt-runtime-l1-1-0.dll

  Image has the following delay load dependencies:

    dbghelp.dll

  Summary

        1000 .data
        2000 .rdata
        9000 .text
"""


@pytest.fixture
def sample_dumpbin_output():
    return SAMPLE_DUMPBIN_OUTPUT
