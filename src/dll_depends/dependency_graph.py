"""
Immutable dependency graph produced by the builder.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple

from .module import DependencyEdge, Module


@dataclass(frozen=True)
class DependencyGraph:
    """
    Complete set of modules reachable from a root binary.

    Modules are keyed by canonical name. ``imports`` keeps each module's
    direct dependencies in the order the extractor reported them, which is
    the order the tree view walks them in.
    """

    root: str
    module_map: Mapping[str, Module]
    imports: Mapping[str, Tuple[str, ...]]
    complete: bool = True
    _dependents: Mapping[str, Tuple[str, ...]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self):
        if self.root not in self.module_map:
            raise ValueError(f"Root module {self.root!r} is not in the graph")

        frozen_imports: Dict[str, Tuple[str, ...]] = {}
        dependents: Dict[str, List[str]] = {name: [] for name in self.module_map}
        for name in self.module_map:
            children = tuple(self.imports.get(name, ()))
            for child in children:
                if child not in self.module_map:
                    raise ValueError(
                        f"Edge {name!r} -> {child!r} references an unknown module"
                    )
                dependents[child].append(name)
            frozen_imports[name] = children

        object.__setattr__(self, "module_map", MappingProxyType(dict(self.module_map)))
        object.__setattr__(self, "imports", MappingProxyType(frozen_imports))
        object.__setattr__(
            self,
            "_dependents",
            MappingProxyType({k: tuple(v) for k, v in dependents.items()}),
        )

    @property
    def root_module(self) -> Module:
        return self.module_map[self.root]

    @property
    def modules(self) -> List[Module]:
        """All modules sorted by canonical name."""
        return [self.module_map[name] for name in sorted(self.module_map)]

    @property
    def edges(self) -> List[DependencyEdge]:
        """All edges, grouped by dependent in canonical-name order."""
        return [
            DependencyEdge(dependent=name, dependency=child)
            for name in sorted(self.imports)
            for child in self.imports[name]
        ]

    @property
    def unresolved_modules(self) -> List[Module]:
        return [m for m in self.modules if m.status.is_problem]

    def __len__(self) -> int:
        return len(self.module_map)

    def __contains__(self, name: object) -> bool:
        return name in self.module_map

    def get(self, name: str) -> Module:
        return self.module_map[name]

    def dependencies_of(self, name: str) -> Tuple[str, ...]:
        return self.imports[name]

    def dependents_of(self, name: str) -> Tuple[str, ...]:
        return self._dependents[name]

    def in_degree(self, name: str) -> int:
        """Number of distinct modules that directly import ``name``."""
        return len(self._dependents[name])
