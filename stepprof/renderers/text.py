import io
import os

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from stepprof.report import ReportModel

QUERY_STYLES = {
    "reader": "green",
    "writer": "yellow",
    "special": "magenta",
}


def _step_label(node, report: ReportModel) -> Text:
    style = "dim" if report.is_collapsed(node) else "bold"
    label = Text(node.name, style=style)
    label.append(
        f"  self {node.self_duration} ms / total {node.total_duration} ms  (+{node.start_offset} ms)",
        style="dim" if style == "dim" else "",
    )
    if node.has_queries:
        label.append(f"  [{node.query_count} queries, {node.query_duration} ms]", style="cyan")
    return label


def _add_steps(branch: Tree, node, report: ReportModel):
    child_branch = branch.add(_step_label(node, report))
    if report.descend(node):
        for child in node.children:
            _add_steps(child_branch, child, report)


def build_step_tree(report: ReportModel) -> Tree:
    tree = Tree(Text(f"Steps (trivial below {report.trivial_threshold} ms)", style="bold underline"))
    for node in report.nodes:
        _add_steps(tree, node, report)
    return tree


def build_query_table(report: ReportModel) -> Table:
    table = Table(title="Queries", expand=False)
    table.add_column("Step")
    table.add_column("Type")
    table.add_column("Start (ms)", justify="right")
    table.add_column("Duration (ms)", justify="right")
    table.add_column("Query", overflow="fold")
    table.add_column("Called from", overflow="fold")

    for node, query in report.iter_queries():
        kind = query.query_type.value
        caller = ""
        if query.call_stack:
            site = query.call_stack[0]
            caller = f"{site.qualified_name} ({os.path.basename(site.filename)}:{site.lineno})"
        table.add_row(
            Text(node.name),
            Text(kind, style=QUERY_STYLES.get(kind, "")),
            f"+{query.start_offset}",
            str(query.duration),
            Text(query.query.strip()),
            Text(caller),
        )
    return table


def render_text(report: ReportModel, width: int = 120) -> str:
    """Plain-text rendering of a finished profile. Empty for a ghost report."""
    if not report:
        return ""

    console = Console(file=io.StringIO(), width=width, record=True, color_system=None)
    console.print(
        f"Profile {report.profile_id}: {report.global_duration} ms, "
        f"memory {report.memory.num}{report.memory.unit}B, "
        f"{report.step_count} steps, "
        f"{report.query_count} queries in {report.total_query_duration} ms ({report.query_percent}%)"
    )
    console.print(build_step_tree(report))
    if report.query_count:
        console.print(build_query_table(report))
    return console.export_text()
