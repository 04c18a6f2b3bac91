import hashlib
import re
import sys
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from stepprof.core.metrics import to_ms

if TYPE_CHECKING:
    from stepprof.nodes.step_node import StepNode

_LEADING_WS = re.compile(r"^\s+", re.MULTILINE)
_WS = re.compile(r"\s+")


class QueryType(str, Enum):
    READER = "reader"
    WRITER = "writer"
    SPECIAL = "special"


_WRITER_CLAUSES = {"insert", "update", "delete"}


@dataclass(frozen=True)
class CallSite:
    filename: str
    lineno: int
    function: str
    class_name: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        if self.class_name:
            return f"{self.class_name}.{self.function}"
        return self.function

    def __str__(self):
        return f"{self.qualified_name} ({self.filename}:{self.lineno})"


def normalize_query(text: str) -> str:
    """Replace each run of leading whitespace on a line with a single newline."""
    return _LEADING_WS.sub("\n", text)


def classify_query(text: str) -> QueryType:
    words = _WS.split(normalize_query(text).strip(), maxsplit=1)
    clause = words[0].lower() if words else ""
    if clause == "select":
        return QueryType.READER
    if clause in _WRITER_CLAUSES:
        return QueryType.WRITER
    return QueryType.SPECIAL


def capture_call_stack(
    skip: int, limit: int, skip_file: Optional[Callable[[str], bool]] = None
) -> tuple[CallSite, ...]:
    """
    Call sites of the running code, innermost first.

    `skip` is the number of frames to leave out, starting with the caller
    of this function. Leading frames whose filename matches `skip_file` are
    dropped as well and do not count against `limit`.
    """
    if limit <= 0:
        return ()
    try:
        frame = sys._getframe(skip + 1)
    except ValueError:
        return ()

    stack = []
    while frame is not None and len(stack) < limit:
        code = frame.f_code
        if not stack and skip_file is not None and skip_file(code.co_filename):
            frame = frame.f_back
            continue
        owner = frame.f_locals.get("self")
        if owner is not None:
            class_name = type(owner).__name__
        elif isinstance(frame.f_locals.get("cls"), type):
            class_name = frame.f_locals["cls"].__name__
        else:
            class_name = None
        stack.append(CallSite(code.co_filename, frame.f_lineno, code.co_name, class_name))
        frame = frame.f_back
    return tuple(stack)


class QueryRecord:
    """One query executed while a step was open."""

    def __init__(
        self,
        query: str,
        step: "StepNode",
        stack_skip: int = 2,
        stack_limit: int = 25,
        skip_file: Optional[Callable[[str], bool]] = None,
    ):
        engine = step.engine
        self._clock = engine.clock if engine is not None else None
        self._step_ref = weakref.ref(step)
        self._engine_ref = weakref.ref(engine) if engine is not None else None
        self.query_text = query
        self.started: float = self._clock() if self._clock else 0.0
        self.ended: Optional[float] = None
        self._duration: Optional[float] = None

        # skips this constructor and the instrumentation that called it
        self.call_stack = capture_call_stack(stack_skip, stack_limit, skip_file)

    def __repr__(self):
        return f"<QueryRecord {self.query_type.value} {self.query_text[:40]!r}>"

    def end(self) -> "QueryRecord":
        """Stop the timer. Only the first call counts."""
        if self.ended is None and self._clock is not None:
            self.ended = self._clock()
            self._duration = self.ended - self.started

            step = self.owning_step
            if step is not None:
                step.add_query_duration(self._duration)
            engine = self._engine_ref() if self._engine_ref is not None else None
            if engine is not None:
                engine.add_query_duration(self._duration)
        return self

    @property
    def owning_step(self) -> Optional["StepNode"]:
        return self._step_ref()

    @property
    def is_closed(self) -> bool:
        return self.ended is not None

    @property
    def query(self) -> str:
        return normalize_query(self.query_text)

    @property
    def query_type(self) -> QueryType:
        return classify_query(self.query_text)

    @property
    def query_id(self) -> str:
        return hashlib.md5(self.query.encode(), usedforsecurity=False).hexdigest()

    @property
    def duration(self) -> float:
        return to_ms(self._duration)

    @property
    def start_offset(self) -> float:
        engine = self._engine_ref() if self._engine_ref is not None else None
        if engine is None:
            return 0.0
        return to_ms(self.started - engine.global_start)
