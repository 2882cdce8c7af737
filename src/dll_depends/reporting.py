"""
Reporting and output formatting for dependency graphs.

Provides the flat table and nested tree views using the Rich library, plain
text capture of both, and a JSON-ready export.
"""

import io
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console, RenderableType
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .dependency_graph import DependencyGraph
from .module import Module, ModuleStatus

NOT_FOUND_MARKER = "⚠️ Not Found ⚠️"
WARNING_SIGN = "⚠️"
REVISIT_NOTE = "(already shown above)"
DEFAULT_TEXT_WIDTH = 200

STATUS_STYLES = {
    ModuleStatus.RESOLVED: "green",
    ModuleStatus.NOT_FOUND: "bold red",
    ModuleStatus.EXTRACTION_FAILED: "bold yellow",
}


def _status_text(module: Module) -> Text:
    style = STATUS_STYLES[module.status]
    if module.status.is_problem:
        return Text(f"{WARNING_SIGN} {module.status.value}", style=style)
    if module.is_system:
        return Text(f"{module.status.value} (system)", style="dim green")
    return Text(module.status.value, style=style)


def _location_text(module: Module) -> Text:
    if module.status is ModuleStatus.NOT_FOUND:
        return Text(NOT_FOUND_MARKER, style=STATUS_STYLES[module.status])
    location = Text(str(module.resolved_path) if module.resolved_path else "")
    if module.status is ModuleStatus.EXTRACTION_FAILED and module.error:
        if location:
            location.append("  ")
        location.append(f"{WARNING_SIGN} {module.error}", style="yellow")
    return location


def _node_label(module: Module) -> Text:
    label = Text(module.label, style="bold" if module.status.is_problem else "")
    if module.status is ModuleStatus.NOT_FOUND:
        label.append(f"  {NOT_FOUND_MARKER}", style=STATUS_STYLES[module.status])
    elif module.status is ModuleStatus.EXTRACTION_FAILED:
        label.append(
            f"  {WARNING_SIGN} {module.status.value} {WARNING_SIGN}",
            style=STATUS_STYLES[module.status],
        )
    elif module.is_system:
        label.append("  (system)", style="dim")
    return label


class GraphReporter:
    """Formats and displays dependency graphs."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def build_table(self, graph: DependencyGraph) -> Table:
        """One row per module, sorted by canonical name."""
        table = Table(
            title=f"📦 Dependencies of {graph.root_module.label}",
            box=box.ROUNDED,
            title_style="bold cyan",
        )
        table.add_column("Module", style="bold", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Resolved Location")
        table.add_column("Dependents", justify="center")

        for module in graph.modules:
            table.add_row(
                Text(module.label),
                _status_text(module),
                _location_text(module),
                str(graph.in_degree(module.name)),
            )
        return table

    def build_tree(self, graph: DependencyGraph) -> Tree:
        """
        Depth-first tree from the root.

        A module's children are expanded only at its first appearance; later
        appearances are back-references, so output grows with the number of
        edges rather than the number of paths.
        """
        root = graph.root_module
        tree = Tree(_node_label(root))
        shown = {root.name}
        stack = [(child, tree) for child in reversed(graph.dependencies_of(root.name))]

        while stack:
            name, parent = stack.pop()
            label = _node_label(graph.get(name))
            if name in shown:
                label.append(f"  {REVISIT_NOTE}", style="dim")
                parent.add(label)
                continue

            shown.add(name)
            node = parent.add(label)
            for child in reversed(graph.dependencies_of(name)):
                stack.append((child, node))

        return tree

    def print_graph(self, graph: DependencyGraph, tree_print: bool = False) -> None:
        """
        Print a graph with a short summary.

        Args:
            graph: Graph to display
            tree_print: Tree view instead of the table view
        """
        self.console.print()
        if tree_print:
            self.console.print(self.build_tree(graph))
        else:
            self.console.print(self.build_table(graph))
        self._print_summary(graph)

    def _print_summary(self, graph: DependencyGraph) -> None:
        unresolved = graph.unresolved_modules
        summary = f"{len(graph)} modules, {len(graph.edges)} imports"
        if unresolved:
            self.console.print(
                f"{WARNING_SIGN}  {summary}, {len(unresolved)} unresolved: "
                + ", ".join(m.label for m in unresolved),
                style="yellow",
                highlight=False,
            )
        else:
            self.console.print(f"✅ {summary}, all resolved", style="green")

        if not graph.complete:
            self.console.print(
                f"{WARNING_SIGN}  Dependency search stopped early; the graph is partial",
                style="bold yellow",
            )


def _render_to_text(renderable: RenderableType, width: int) -> str:
    buffer = io.StringIO()
    console = Console(
        file=buffer,
        width=width,
        color_system=None,
        force_terminal=False,
        highlight=False,
    )
    console.print(renderable)
    return buffer.getvalue()


def render_table(graph: DependencyGraph, width: int = DEFAULT_TEXT_WIDTH) -> str:
    """Table view as plain text."""
    return _render_to_text(GraphReporter().build_table(graph), width)


def render_tree(graph: DependencyGraph, width: int = DEFAULT_TEXT_WIDTH) -> str:
    """Tree view as plain text."""
    return _render_to_text(GraphReporter().build_tree(graph), width)


def graph_to_dict(graph: DependencyGraph) -> Dict[str, Any]:
    """Export a graph as JSON-serializable data."""
    return {
        "root": graph.root,
        "complete": graph.complete,
        "total_modules": len(graph),
        "unresolved": [m.name for m in graph.unresolved_modules],
        "modules": [
            {
                "name": module.name,
                "label": module.label,
                "status": module.status.value,
                "resolved_path": (
                    str(module.resolved_path) if module.resolved_path else None
                ),
                "dependents": graph.in_degree(module.name),
                "dependencies": list(graph.dependencies_of(module.name)),
                "is_system": module.is_system,
                "error": module.error,
            }
            for module in graph.modules
        ],
        "edges": [
            {"dependent": edge.dependent, "dependency": edge.dependency}
            for edge in graph.edges
        ],
    }
