"""
Per-context access to the active profiler.

Each request (or task) activates its own ProfilerEngine; code further down
calls the module-level helpers without passing the engine around. With no
active engine every helper returns the ghost node, so instrumentation can
stay in place unconditionally.
"""

import functools
import inspect
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator, Optional

from stepprof.core.logging import profile_id_ctx
from stepprof.nodes.ghost import GHOST
from stepprof.profiler import ProfilerEngine

_active_engine: ContextVar[Optional[ProfilerEngine]] = ContextVar("stepprof_engine", default=None)


def get_active_engine() -> Optional[ProfilerEngine]:
    return _active_engine.get()


@contextmanager
def activate(engine: ProfilerEngine) -> Iterator[ProfilerEngine]:
    """Make `engine` the active profiler for the current context."""
    token = _active_engine.set(engine)
    id_token = profile_id_ctx.set(engine.profile_id)
    try:
        yield engine
    finally:
        profile_id_ctx.reset(id_token)
        _active_engine.reset(token)


def start(name: str):
    engine = _active_engine.get()
    if engine is None:
        return GHOST
    return engine.start(name)


def end(name: str, force: bool = False):
    engine = _active_engine.get()
    if engine is None:
        return GHOST
    return engine.end(name, force=force)


def query_start(query: str, skip_file=None):
    engine = _active_engine.get()
    if engine is None:
        return GHOST
    # skip this helper's frame in the captured call stack
    return engine.query_start(query, stack_skip=1, skip_file=skip_file)


def query_end():
    engine = _active_engine.get()
    if engine is None:
        return GHOST
    return engine.query_end()


@contextmanager
def step(name: str):
    """`with step("load rules"):` times the block as a step of the active engine."""
    node = start(name)
    try:
        yield node
    finally:
        end(name)


def profiled(name: Optional[str] = None) -> Callable:
    """Decorator timing every call of a function (sync or async) as a step."""

    def decorator(func: Callable) -> Callable:
        step_name = name or func.__qualname__

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with step(step_name):
                    return await func(*args, **kwargs)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with step(step_name):
                return func(*args, **kwargs)
        return wrapper

    return decorator
