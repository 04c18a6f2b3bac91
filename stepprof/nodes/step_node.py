import hashlib
import weakref
from typing import TYPE_CHECKING, Optional

from stepprof.core.metrics import to_ms

if TYPE_CHECKING:
    from stepprof.nodes.query_record import QueryRecord
    from stepprof.profiler import ProfilerEngine


class StepNode:
    """
    One recorded step.

    A node owns its children and its query records; the parent and the
    engine are held through weak references so the tree is strictly
    parent-owns-children. Raw timings are kept in seconds, every public
    duration is milliseconds rounded to one decimal.
    """

    def __init__(self, name: str, depth: int, parent: Optional["StepNode"], engine: "ProfilerEngine"):
        self._engine_ref = weakref.ref(engine)
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self.name = name
        self.depth = depth
        self._children: list[StepNode] = []
        self._queries: list["QueryRecord"] = []

        self.started: float = engine.clock()
        self.ended: Optional[float] = None
        self._total_duration: Optional[float] = None
        self._self_duration: Optional[float] = None
        self._child_duration = 0.0
        self._query_duration = 0.0

    def __repr__(self):
        state = "closed" if self.is_closed else "open"
        return f"<StepNode {self.name!r} depth={self.depth} {state}>"

    # -----------------------------
    #  Close protocol
    # -----------------------------
    def close(self, caller_token=None) -> Optional["StepNode"]:
        """
        Stop the timer for this step.

        Only the owning engine closes a node directly; any other caller is
        routed through `engine.end(name)` so the open-step stack stays
        consistent. Closing twice is a no-op. Returns the parent node.
        """
        engine = self._engine_ref()
        if self.ended is not None or engine is None:
            return self.parent

        if caller_token is not engine.instance_token:
            engine.end(self.name)
            return self.parent

        self.ended = engine.clock()
        self._total_duration = self.ended - self.started
        self._self_duration = self._total_duration - self._child_duration

        parent = self.parent
        if parent is not None:
            parent.add_child_duration(self._total_duration)
        engine.record_self_duration(self._self_duration)

        return self.parent

    def end(self) -> Optional["StepNode"]:
        """Public close path, equivalent to `engine.end(self.name)`."""
        return self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if not self.is_closed:
            self.end()
        return False

    # -----------------------------
    #  Tree bookkeeping
    # -----------------------------
    def add_child_duration(self, duration: float) -> float:
        self._child_duration += duration
        return self._child_duration

    def add_child(self, node: "StepNode") -> "StepNode":
        self._children.append(node)
        return self

    def add_query(self, record: "QueryRecord") -> "QueryRecord":
        self._queries.append(record)
        return record

    def add_query_duration(self, duration: float) -> "StepNode":
        self._query_duration += duration
        return self

    def has_non_trivial_children(self) -> bool:
        """True when any descendant is non-trivial. Used to decide collapsing."""
        engine = self._engine_ref()
        if engine is None:
            return False
        for child in self._children:
            if not engine.is_trivial(child):
                return True
            if child.has_non_trivial_children():
                return True
        return False

    # -----------------------------
    #  Accessors
    # -----------------------------
    @property
    def parent(self) -> Optional["StepNode"]:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def engine(self) -> Optional["ProfilerEngine"]:
        return self._engine_ref()

    @property
    def children(self) -> tuple["StepNode", ...]:
        return tuple(self._children)

    @property
    def has_children(self) -> bool:
        return len(self._children) > 0

    @property
    def queries(self) -> tuple["QueryRecord", ...]:
        return tuple(self._queries)

    @property
    def query_count(self) -> int:
        return len(self._queries)

    @property
    def has_queries(self) -> bool:
        return len(self._queries) > 0

    @property
    def is_closed(self) -> bool:
        return self.ended is not None

    @property
    def total_duration(self) -> float:
        return to_ms(self._total_duration)

    @property
    def self_duration(self) -> float:
        return to_ms(self._self_duration)

    @property
    def query_duration(self) -> float:
        return to_ms(self._query_duration)

    @property
    def start_offset(self) -> float:
        """Milliseconds between the engine's global start and this step's start."""
        engine = self._engine_ref()
        if engine is None:
            return 0.0
        return to_ms(self.started - engine.global_start)

    @property
    def node_id(self) -> str:
        return hashlib.md5(f"{self.name}{self.started}".encode(), usedforsecurity=False).hexdigest()
