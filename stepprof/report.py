from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterator, Optional

from stepprof.core.metrics import MemoryUsage

if TYPE_CHECKING:
    from stepprof.nodes.query_record import QueryRecord
    from stepprof.nodes.step_node import StepNode
    from stepprof.profiler import ProfilerEngine


@dataclass(frozen=True)
class ReportModel:
    """
    Read-only summary handed to renderers once a profile is finalized.

    Every time value is in milliseconds rounded to one decimal.
    `global_start` is milliseconds since the unix epoch.
    """

    profile_id: str
    global_start: float
    global_duration: float
    memory: MemoryUsage
    total_query_duration: float
    query_percent: float
    nodes: tuple["StepNode", ...]
    show_depth: int = -1
    trivial_threshold: float = 0.0
    step_count: int = 0
    query_count: int = 0
    out_of_order_closes: int = 0
    process: dict[str, Any] = field(default_factory=dict)
    # keeps the weakly referenced engine alive for as long as the report is
    engine: Optional["ProfilerEngine"] = field(default=None, repr=False, compare=False)

    @property
    def started_at(self) -> datetime:
        return datetime.fromtimestamp(self.global_start / 1000, tz=timezone.utc)

    def is_trivial(self, node: "StepNode") -> bool:
        return node.self_duration < self.trivial_threshold

    def is_collapsed(self, node: "StepNode") -> bool:
        """Trivial with nothing interesting underneath."""
        return self.is_trivial(node) and not node.has_non_trivial_children()

    def descend(self, node: "StepNode") -> bool:
        """Whether a renderer may walk into this node's children."""
        return node.has_children and (self.show_depth == -1 or self.show_depth > node.depth)

    def walk(self) -> Iterator["StepNode"]:
        """Depth-first, pre-order, limited by show_depth."""
        stack = list(reversed(self.nodes))
        while stack:
            node = stack.pop()
            yield node
            if self.descend(node):
                stack.extend(reversed(node.children))

    def iter_queries(self) -> Iterator[tuple["StepNode", "QueryRecord"]]:
        """Every query with its step, across the whole tree regardless of show_depth."""
        stack = list(reversed(self.nodes))
        while stack:
            node = stack.pop()
            for query in node.queries:
                yield node, query
            stack.extend(reversed(node.children))
