import os

from sqlalchemy import event
from sqlalchemy.engine import Engine

from stepprof import context
from stepprof.core.logging_utils import get_profiler_logger

_SQLALCHEMY_DIR = os.sep + "sqlalchemy" + os.sep


def _is_library_file(filename: str) -> bool:
    return _SQLALCHEMY_DIR in filename or filename == __file__


def _before_cursor_execute(conn, cursor, statement, parameters, exec_context, executemany):
    try:
        # start the stack at the code that issued the statement
        context.query_start(statement, skip_file=_is_library_file)
    except Exception:
        get_profiler_logger().exception("Failed to record query start")


def _after_cursor_execute(conn, cursor, statement, parameters, exec_context, executemany):
    try:
        context.query_end()
    except Exception:
        get_profiler_logger().exception("Failed to record query end")


def _handle_error(exception_context):
    try:
        context.query_end()
    except Exception:
        get_profiler_logger().exception("Failed to record failed query")


_LISTENERS = (
    ("before_cursor_execute", _before_cursor_execute),
    ("after_cursor_execute", _after_cursor_execute),
    ("handle_error", _handle_error),
)


def _sync_engine(engine) -> Engine:
    # AsyncEngine exposes its sync counterpart, which is where events live
    return getattr(engine, "sync_engine", engine)


def instrument_engine(engine):
    """Time every statement run through `engine` as a query of the active profiler."""
    target = _sync_engine(engine)
    for name, fn in _LISTENERS:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)
    return engine


def uninstrument_engine(engine):
    target = _sync_engine(engine)
    for name, fn in _LISTENERS:
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
    return engine
