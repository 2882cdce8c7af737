"""
Module name to file path resolution.

The search order is a policy of the resolver, not of the graph builder:
directories are tried in the order given, followed by ``PATH`` when enabled.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .module import canonicalize

API_SET_PREFIXES = ("api-ms-win-", "ext-ms-win-")
SYSTEM_DIR_MARKERS = (
    "\\windows\\system32\\",
    "\\windows\\syswow64\\",
    "\\windows kits\\",
)


class PathResolver(ABC):
    """Locates a module on disk by name."""

    @abstractmethod
    def resolve(self, module_name: str) -> Optional[Path]:
        """Return the file that would satisfy ``module_name``, or None."""


class SearchPathResolver(PathResolver):
    """
    Resolve module names against an ordered list of directories.

    Matching is case-insensitive regardless of the host file system.
    Directory listings are read once and cached.
    """

    def __init__(self, search_dirs: Iterable[Path], use_system_path: bool = True):
        dirs: List[Path] = [Path(d) for d in search_dirs]
        if use_system_path:
            dirs.extend(
                Path(entry)
                for entry in os.environ.get("PATH", "").split(os.pathsep)
                if entry
            )

        # Keep first occurrence so the configured order wins
        self.search_dirs: List[Path] = []
        seen = set()
        for directory in dirs:
            key = os.path.normcase(str(directory))
            if key not in seen:
                seen.add(key)
                self.search_dirs.append(directory)

        self._listings: Dict[Path, Dict[str, Path]] = {}

    def _listing(self, directory: Path) -> Dict[str, Path]:
        listing = self._listings.get(directory)
        if listing is None:
            listing = {}
            try:
                with os.scandir(directory) as entries:
                    for entry in sorted(entries, key=lambda e: e.name):
                        if entry.is_file():
                            listing.setdefault(entry.name.casefold(), Path(entry.path))
            except OSError:
                # Missing or unreadable search directories are simply skipped
                pass
            self._listings[directory] = listing
        return listing

    def resolve(self, module_name: str) -> Optional[Path]:
        key = canonicalize(module_name)
        for directory in self.search_dirs:
            match = self._listing(directory).get(key)
            if match is not None:
                return match
        return None


def is_api_set_name(module_name: str) -> bool:
    """API set contracts are virtual names redirected by the loader."""
    return canonicalize(module_name).startswith(API_SET_PREFIXES)


def is_system_path(path: Path) -> bool:
    normalized = str(path).replace("/", "\\").lower()
    return any(marker in normalized for marker in SYSTEM_DIR_MARKERS)
