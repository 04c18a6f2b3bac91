import math
import time
import uuid
from typing import Callable, Optional, Sequence

from stepprof.core.config import settings
from stepprof.core.logging_utils import get_profiler_logger
from stepprof.core.metrics import collect_process_metrics, format_memory, memory_usage_bytes, to_ms
from stepprof.exceptions import IllegalStateError
from stepprof.nodes.ghost import GHOST
from stepprof.nodes.query_record import QueryRecord
from stepprof.nodes.step_node import StepNode
from stepprof.report import ReportModel

GLOBAL_END = "___GLOBAL_END_PROFILER___"


def trivial_threshold(samples_ms: Sequence[float], fraction: float) -> float:
    """
    Nearest-rank cut-off: the sample at index floor(n * fraction) of the
    ascending samples, clamped to the last one. 0 when there are no samples.
    """
    if not samples_ms:
        return 0.0
    ordered = sorted(samples_ms)
    index = min(int(math.floor(len(ordered) * fraction)), len(ordered) - 1)
    return ordered[index]


class ProfilerEngine:
    """
    Records a tree of steps and the queries run inside them for one
    request or process.

    The engine keeps a single cursor on the innermost open step, so one
    engine must not be shared between concurrent tasks.
    """

    def __init__(
        self,
        enabled: Optional[bool] = None,
        trivial_fraction: Optional[float] = None,
        default_step: Optional[str] = None,
        callstack_limit: Optional[int] = None,
        clock: Callable[[], float] = time.perf_counter,
        wall_clock: Callable[[], float] = time.time,
        profile_id: Optional[str] = None,
    ):
        self.clock = clock
        self.profile_id = profile_id or uuid.uuid4().hex
        self.instance_token = object()
        self.logger = get_profiler_logger(self.profile_id)
        self._report: Optional[ReportModel] = None

        self._enabled = settings.PROFILER_ENABLED if enabled is None else enabled
        self._trivial_fraction = settings.PROFILER_TRIVIAL_THRESHOLD
        if trivial_fraction is not None:
            self.set_trivial_threshold(trivial_fraction)
        self.default_step = default_step or settings.PROFILER_DEFAULT_STEP
        self.callstack_limit = settings.PROFILER_CALLSTACK_LIMIT if callstack_limit is None else callstack_limit

        self.current_node: Optional[StepNode] = None
        self.active_query: Optional[QueryRecord] = None
        self.depth = 0
        self._top_nodes: list[StepNode] = []
        self._self_durations: list[float] = []
        self._total_query_duration = 0.0
        self._query_count = 0
        self._step_count = 0
        self.out_of_order_closes = 0

        self.global_start = clock()
        self.global_start_wall = wall_clock()
        self.global_end: Optional[float] = None
        self._trivial_threshold_ms = 0.0

    def __repr__(self):
        return f"<ProfilerEngine {self.profile_id} enabled={self._enabled} depth={self.depth}>"

    # -----------------------------
    #  Enable / disable
    # -----------------------------
    def is_enabled(self) -> bool:
        return self._enabled

    def enable(self):
        self._enabled = True

    def disable(self):
        if self.current_node is None and not self._top_nodes:
            self._enabled = False
        else:
            raise IllegalStateError("Can not disable profiling once it has begun.")

    @property
    def is_finalized(self) -> bool:
        return self._report is not None

    # -----------------------------
    #  Steps
    # -----------------------------
    def start(self, name: str):
        """Open a step under the current one and make it current."""
        if not self._enabled:
            return GHOST
        if self.is_finalized:
            self.logger.warning(
                f"Ignoring start of step '{name}' after the profile was finalized",
                extra={"event": "start_after_finalize", "step": name},
            )
            return GHOST

        self.depth += 1
        node = StepNode(name, self.depth, self.current_node, self)

        if self.current_node is not None:
            self.current_node.add_child(node)
        else:
            self._top_nodes.append(node)

        self.current_node = node
        self._step_count += 1
        return node

    def end(self, name: str, force: bool = False):
        """
        Close steps from the innermost outwards until one named `name` is
        closed.

        Steps closed on the way are reported as out of order unless `force`
        is set. When no open step has that name every open step ends up
        closed; cleanup paths rely on this.
        """
        if not self._enabled:
            return GHOST

        if self.current_node is None:
            return None

        while self.current_node is not None and self.current_node.name != name:
            if not force:
                self.out_of_order_closes += 1
                self.logger.warning(
                    f"Ending profile node '{self.current_node.name}' out of order (Requested end: '{name}')",
                    extra={
                        "event": "out_of_order_end",
                        "closed_step": self.current_node.name,
                        "requested_step": name,
                    },
                )
            self._close_current()

        if self.current_node is not None and self.current_node.name == name:
            self._close_current()

        return self.current_node

    def _close_current(self):
        self.current_node = self.current_node.close(self.instance_token)
        self.depth -= 1

    def record_self_duration(self, duration: float):
        self._self_durations.append(duration)

    # -----------------------------
    #  Queries
    # -----------------------------
    def query_start(self, query: str, stack_skip: int = 0, skip_file=None):
        """
        Start timing a query in the current step, opening the default
        top-level step when nothing is open.

        `stack_skip` drops that many extra wrapper frames from the captured
        call stack. Leading frames from files matching `skip_file` are left out
        too and do not count against the stack limit.
        """
        if not self._enabled:
            return GHOST
        if self.is_finalized:
            self.logger.warning(
                "Ignoring query started after the profile was finalized",
                extra={"event": "query_after_finalize"},
            )
            return GHOST

        if self.current_node is None:
            self.start(self.default_step)

        record = QueryRecord(
            query,
            self.current_node,
            stack_skip=2 + stack_skip,
            stack_limit=self.callstack_limit,
            skip_file=skip_file,
        )
        self.current_node.add_query(record)
        self.active_query = record
        self._query_count += 1
        return record

    def query_end(self):
        if not self._enabled:
            return GHOST
        if self.is_finalized:
            self.logger.warning(
                "Ignoring query ended after the profile was finalized",
                extra={"event": "query_after_finalize"},
            )
            return GHOST
        if self.active_query is None:
            return None
        record = self.active_query.end()
        self.active_query = None
        return record

    def add_query_duration(self, duration: float) -> float:
        self._total_query_duration += duration
        return self._total_query_duration

    # -----------------------------
    #  Triviality
    # -----------------------------
    def set_trivial_threshold(self, fraction: float):
        """
        Percentile boundary for trivial steps. With the default .75 the
        fastest 75% of steps (by self time) count as trivial.
        """
        if self.is_finalized:
            raise IllegalStateError("Can not change the trivial threshold after finalize().")
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"Trivial threshold must be between 0 and 1, got {fraction}")
        self._trivial_fraction = fraction

    @property
    def trivial_threshold_fraction(self) -> float:
        return self._trivial_fraction

    @property
    def trivial_threshold_value(self) -> float:
        """Cut-off in ms; 0 until finalize() ran, so nothing is trivial before that."""
        return self._trivial_threshold_ms

    def is_trivial(self, node: StepNode) -> bool:
        return node.self_duration < self._trivial_threshold_ms

    # -----------------------------
    #  Totals
    # -----------------------------
    @property
    def top_nodes(self) -> tuple[StepNode, ...]:
        return tuple(self._top_nodes)

    @property
    def self_durations(self) -> tuple[float, ...]:
        return tuple(self._self_durations)

    @property
    def total_query_duration(self) -> float:
        return to_ms(self._total_query_duration)

    @property
    def global_duration(self) -> float:
        end = self.global_end if self.global_end is not None else self.clock()
        return to_ms(end - self.global_start)

    @property
    def global_start_ms(self) -> float:
        return round(self.global_start_wall * 1000, 1)

    def elapsed_ms(self) -> float:
        return to_ms(self.clock() - self.global_start)

    # -----------------------------
    #  Finalization
    # -----------------------------
    def finalize(self, show_depth: int = -1):
        """
        End a running query, close every open step, stamp the global end,
        compute the trivial threshold and return the read-only report. Later
        calls return the same report.
        """
        if not self._enabled:
            return GHOST
        if self._report is not None:
            return self._report

        # a query still running is charged up to now
        if self.active_query is not None:
            self.active_query.end()
            self.active_query = None

        while self.current_node is not None:
            self.end(GLOBAL_END, force=True)

        self.global_end = self.clock()
        self._trivial_threshold_ms = trivial_threshold(
            [to_ms(d) for d in self._self_durations], self._trivial_fraction
        )

        duration = self.global_duration
        query_time = self.total_query_duration
        self._report = ReportModel(
            profile_id=self.profile_id,
            global_start=self.global_start_ms,
            global_duration=duration,
            memory=format_memory(memory_usage_bytes()),
            total_query_duration=query_time,
            query_percent=round(round(query_time / duration, 2) * 100, 1) if duration > 0 else 0.0,
            nodes=tuple(self._top_nodes),
            show_depth=show_depth,
            trivial_threshold=self._trivial_threshold_ms,
            step_count=self._step_count,
            query_count=self._query_count,
            out_of_order_closes=self.out_of_order_closes,
            process=collect_process_metrics(),
            engine=self,
        )
        return self._report
