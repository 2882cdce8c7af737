"""
Import extraction backends.

An extractor reads the static import table of a PE image and returns the
directly imported module names in declaration order. Two backends are
provided: ``dumpbin /DEPENDENTS`` from the Visual Studio toolchain, and the
``pefile`` library which needs no external tool.
"""

import asyncio
import os
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional

import pefile

from .error_handling import (
    ErrorCategory,
    ExtractionError,
    ToolNotFoundError,
    get_error_handler,
)
from .structured_logging import log_extractor_invoked

DUMPBIN_BANNER = "Dump of file"
DEPENDENCIES_HEADER = "Image has the following dependencies:"
DUMPBIN_EXECUTABLES = ("dumpbin.exe", "dumpbin")


class ImportExtractor(ABC):
    """Base class for import extractors."""

    @abstractmethod
    async def extract(self, file_path: Path) -> List[str]:
        """
        Read the directly imported module names of a binary.

        Raises:
            ExtractionError: If the imports cannot be read
        """

    @abstractmethod
    def get_backend(self) -> str:
        """Get the backend name (dumpbin, pefile, ...)."""


def parse_dumpbin_output(output: str) -> List[str]:
    """
    Parse the output of ``dumpbin /DEPENDENTS``.

    Only the static dependency section is read; delay-load dependencies
    are listed under a separate header and ignored.

    Args:
        output: Captured standard output

    Returns:
        List[str]: Imported module names in order

    Raises:
        ExtractionError: If the output does not look like a dumpbin report
    """
    if DUMPBIN_BANNER not in output:
        raise ExtractionError("Unrecognized dumpbin output")

    header_idx = output.find(DEPENDENCIES_HEADER)
    if header_idx == -1:
        # A valid image without an import table
        return []

    names = []
    section = output[header_idx + len(DEPENDENCIES_HEADER):].lstrip("\r\n")
    for line in section.splitlines():
        name = line.strip()
        if not name:
            break
        names.append(name)
    return names


class DumpbinImportExtractor(ImportExtractor):
    """Runs ``dumpbin /DEPENDENTS`` as a subprocess per binary."""

    def __init__(self, dumpbin_path: Path):
        self.dumpbin_path = Path(dumpbin_path)
        self.error_handler = get_error_handler()

    def get_backend(self) -> str:
        return "dumpbin"

    async def extract(self, file_path: Path) -> List[str]:
        start_time = time.monotonic()
        stdout, stderr, return_code = await self._run_command_safely(
            [str(self.dumpbin_path), "/DEPENDENTS", str(file_path)]
        )

        if return_code != 0 or "fatal error" in stdout.lower():
            message = (stderr or stdout).strip().splitlines()
            raise ExtractionError(
                f"dumpbin exited with code {return_code}: "
                f"{message[-1] if message else 'no output'}",
                file_path=str(file_path),
            )

        try:
            names = parse_dumpbin_output(stdout)
        except ExtractionError as e:
            e.file_path = str(file_path)
            raise

        log_extractor_invoked(
            str(file_path),
            import_count=len(names),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return names

    async def _run_command_safely(self, command: List[str]):
        """
        Run a command and capture its output.

        The child is killed if the awaiting task is cancelled, which is how
        the builder's per-extraction timeout reaches the subprocess.

        Returns:
            Tuple of (stdout, stderr, return_code)
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            self.error_handler.error(
                ErrorCategory.TOOL,
                f"Command execution failed: {e}",
                "import_extractor",
                "_run_command_safely",
                exception=e,
                details={"command": command[0]},
            )
            raise ExtractionError(f"Could not run {command[0]}: {e}")

        try:
            stdout_data, stderr_data = await process.communicate()
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        stdout = stdout_data.decode("utf-8", errors="replace") if stdout_data else ""
        stderr = stderr_data.decode("utf-8", errors="replace") if stderr_data else ""
        return stdout, stderr, process.returncode or 0


class PefileImportExtractor(ImportExtractor):
    """Reads the import directory with the pefile library."""

    def get_backend(self) -> str:
        return "pefile"

    async def extract(self, file_path: Path) -> List[str]:
        return await asyncio.to_thread(self._read_imports, Path(file_path))

    def _read_imports(self, file_path: Path) -> List[str]:
        try:
            pe = pefile.PE(str(file_path), fast_load=True)
        except (pefile.PEFormatError, OSError) as e:
            raise ExtractionError(
                f"Not a readable PE image: {e}", file_path=str(file_path)
            )

        try:
            pe.parse_data_directories(
                directories=[pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_IMPORT"]]
            )
            names = [
                entry.dll.decode("utf-8", errors="replace")
                for entry in getattr(pe, "DIRECTORY_ENTRY_IMPORT", [])
            ]
        except pefile.PEFormatError as e:
            raise ExtractionError(
                f"Malformed import table: {e}", file_path=str(file_path)
            )
        finally:
            pe.close()

        log_extractor_invoked(str(file_path), import_count=len(names))
        return names


def find_dumpbin(visual_studio_roots: Iterable[str] = ()) -> Path:
    """
    Locate dumpbin on PATH, then under the Visual Studio install roots.

    Raises:
        ToolNotFoundError: If no dumpbin executable is found
    """
    for executable in DUMPBIN_EXECUTABLES:
        found = shutil.which(executable)
        if found:
            return Path(found)

    for root in visual_studio_roots:
        if not os.path.isdir(root):
            continue
        for dirpath, _, filenames in os.walk(root):
            for filename in filenames:
                if filename.lower() == "dumpbin.exe":
                    return Path(dirpath) / filename

    raise ToolNotFoundError(
        "Failed to find dumpbin.exe; pass --dumpbin or use --extractor pefile"
    )


def get_import_extractor(
    backend: str = "dumpbin",
    dumpbin_path: Optional[str] = None,
    visual_studio_roots: Iterable[str] = (),
) -> ImportExtractor:
    """
    Factory function to get the configured import extractor.

    The dumpbin location is resolved here, once, before any build starts.

    Args:
        backend: "dumpbin" or "pefile"
        dumpbin_path: Explicit dumpbin location, skips discovery
        visual_studio_roots: Directories searched when discovering dumpbin

    Raises:
        ToolNotFoundError: If dumpbin is required but cannot be located
        ValueError: If the backend is not supported
    """
    if backend == "pefile":
        return PefileImportExtractor()
    elif backend == "dumpbin":
        if dumpbin_path:
            path = Path(dumpbin_path)
            if not path.is_file():
                raise ToolNotFoundError(f"dumpbin not found at {path}")
        else:
            path = find_dumpbin(visual_studio_roots)
        return DumpbinImportExtractor(path)
    else:
        raise ValueError(f"Unsupported extractor backend: {backend}")
