import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError

from stepprof import context
from stepprof.integrations.sqlalchemy_events import (
    _before_cursor_execute,
    instrument_engine,
    uninstrument_engine,
)
from stepprof.profiler import ProfilerEngine


@pytest.fixture
def db():
    engine = create_engine("sqlite://")
    # open the pool's first connection before instrumenting
    with engine.connect():
        pass
    instrument_engine(engine)
    yield engine
    uninstrument_engine(engine)
    engine.dispose()


def _fetch_answer(conn):
    return conn.execute(text("SELECT 42")).scalar()


def test_statements_become_queries(db, engine):
    with context.activate(engine):
        context.start("db work")
        with db.connect() as conn:
            conn.execute(text("CREATE TABLE t (id INTEGER)"))
            conn.execute(text("INSERT INTO t (id) VALUES (1)"))
            assert _fetch_answer(conn) == 42
        context.end("db work")

    step = engine.top_nodes[0]
    types = [q.query_type.value for q in step.queries]
    assert types == ["special", "writer", "reader"]
    assert all(q.is_closed for q in step.queries)
    assert engine.active_query is None


def test_call_stack_starts_in_host_code(db, engine):
    with context.activate(engine):
        context.start("s")
        with db.connect() as conn:
            _fetch_answer(conn)

    record = engine.top_nodes[0].queries[0]
    assert record.call_stack[0].function == "_fetch_answer"


def test_stack_limit_spent_on_host_frames(db, clock):
    engine = ProfilerEngine(enabled=True, callstack_limit=2, clock=clock)
    with context.activate(engine):
        context.start("s")
        with db.connect() as conn:
            _fetch_answer(conn)

    stack = engine.top_nodes[0].queries[0].call_stack
    assert len(stack) == 2
    assert stack[0].function == "_fetch_answer"
    assert stack[1].function == "test_stack_limit_spent_on_host_frames"


def test_query_outside_step_uses_default_step(db, engine):
    with context.activate(engine):
        with db.connect() as conn:
            _fetch_answer(conn)

    assert engine.top_nodes[0].name == engine.default_step


def test_failed_statement_still_ends_query(db, engine):
    with context.activate(engine):
        context.start("s")
        with db.connect() as conn:
            with pytest.raises(OperationalError):
                conn.execute(text("SELECT * FROM missing_table"))

    record = engine.top_nodes[0].queries[0]
    assert record.is_closed
    assert engine.active_query is None


def test_no_active_engine_is_harmless(db):
    with db.connect() as conn:
        assert _fetch_answer(conn) == 42


def test_instrument_is_idempotent(db):
    instrument_engine(db)
    assert event.contains(db, "before_cursor_execute", _before_cursor_execute)
    uninstrument_engine(db)
    assert not event.contains(db, "before_cursor_execute", _before_cursor_execute)
