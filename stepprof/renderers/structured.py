from typing import Any

from stepprof.report import ReportModel


def query_to_dict(query) -> dict[str, Any]:
    return {
        "query_id": query.query_id,
        "type": query.query_type.value,
        "query": query.query,
        "start_offset_ms": query.start_offset,
        "duration_ms": query.duration,
        "call_stack": [
            {
                "function": site.qualified_name,
                "filename": site.filename,
                "lineno": site.lineno,
            }
            for site in query.call_stack
        ],
    }


def step_to_dict(node, report: ReportModel) -> dict[str, Any]:
    data = {
        "id": node.node_id,
        "name": node.name,
        "depth": node.depth,
        "start_offset_ms": node.start_offset,
        "self_ms": node.self_duration,
        "total_ms": node.total_duration,
        "trivial": report.is_collapsed(node),
        "query_count": node.query_count,
        "query_ms": node.query_duration,
        "queries": [query_to_dict(q) for q in node.queries],
        "children": [],
    }
    if report.descend(node):
        data["children"] = [step_to_dict(child, report) for child in node.children]
    return data


def report_to_dict(report: ReportModel) -> dict[str, Any]:
    """JSON-safe view of a report, suitable for structured log payloads."""
    if not report:
        return {}

    return {
        "profile_id": report.profile_id,
        "started_at": report.started_at.isoformat(),
        "duration_ms": report.global_duration,
        "memory": {"num": report.memory.num, "unit": report.memory.unit},
        "query_ms": report.total_query_duration,
        "query_percent": report.query_percent,
        "query_count": report.query_count,
        "step_count": report.step_count,
        "trivial_threshold_ms": report.trivial_threshold,
        "out_of_order_closes": report.out_of_order_closes,
        "show_depth": report.show_depth,
        "steps": [step_to_dict(node, report) for node in report.nodes],
    }
