"""
Module identity and per-module resolution records.

A module is identified by its canonical name so the same DLL reached through
different import tables (or spelled with different letter case) is only ever
represented once.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

DEFAULT_EXTENSION = ".dll"


def canonicalize(name: str) -> str:
    """
    Map a dependency name to the key used for deduplication.

    Windows resolves module names case-insensitively and appends ``.dll``
    to names that carry no extension, so both are folded into the key.

    Args:
        name: Module name as declared in an import table or a file name

    Returns:
        str: Canonical module key
    """
    key = name.strip().casefold()
    if key and "." not in key:
        key += DEFAULT_EXTENSION
    return key


class ModuleStatus(Enum):
    """Outcome of locating and inspecting a module."""

    RESOLVED = "Resolved"
    NOT_FOUND = "Not Found"  # Path resolver could not locate the file
    EXTRACTION_FAILED = "Extraction Failed"  # Located but imports unreadable

    @property
    def is_problem(self) -> bool:
        return self is not ModuleStatus.RESOLVED


@dataclass(frozen=True)
class Module:
    """A finalized dependency node."""

    name: str
    status: ModuleStatus
    resolved_path: Optional[Path] = None
    error: Optional[str] = None
    is_system: bool = False

    @property
    def label(self) -> str:
        """On-disk file name when known, canonical name otherwise."""
        if self.resolved_path is not None:
            return self.resolved_path.name
        return self.name


@dataclass(frozen=True)
class DependencyEdge:
    """``dependent`` directly imports ``dependency`` (canonical names)."""

    dependent: str
    dependency: str
