import json

import pytest

from stepprof.core.metrics import MemoryUsage, format_memory
from stepprof.nodes.ghost import GHOST
from stepprof.renderers.structured import report_to_dict
from stepprof.renderers.text import render_text


@pytest.fixture
def finished_report(engine, clock):
    engine.start("request")
    clock.advance(1)
    engine.start("load user")
    engine.query_start("SELECT * FROM users WHERE id = [1]")
    clock.advance(4)
    engine.query_end()
    engine.end("load user")
    engine.start("render")
    engine.start("partial")
    clock.advance(30)
    engine.end("partial")
    engine.end("render")
    engine.end("request")
    return engine.finalize()


class TestMemoryFormatting:

    @pytest.mark.parametrize(
        "usage,expected",
        [
            (512, MemoryUsage(512, "")),
            (1_500, MemoryUsage(1.5, "K")),
            (899_999, MemoryUsage(900.0, "K")),
            (900_000, MemoryUsage(0.9, "M")),
            (25_000_000, MemoryUsage(25.0, "M")),
            (2_500_000_000, MemoryUsage(2.5, "G")),
            (1_000_000_000_000, MemoryUsage(1.0, "T")),
        ],
    )
    def test_unit_ladder(self, usage, expected):
        assert format_memory(usage) == expected

    def test_forced_unit(self):
        assert format_memory(25_000_000, "K") == MemoryUsage(25000.0, "K")
        assert format_memory(25_000_000, "B") == MemoryUsage(25_000_000, "")

    def test_unknown_unit(self):
        with pytest.raises(ValueError):
            format_memory(1, "X")


class TestReportModel:

    def test_walk_respects_show_depth(self, engine, clock):
        engine.start("a")
        engine.start("b")
        engine.start("c")
        report = engine.finalize(show_depth=2)
        assert [n.name for n in report.walk()] == ["a", "b"]

    def test_walk_full_tree(self, finished_report):
        names = [n.name for n in finished_report.walk()]
        assert names == ["request", "load user", "render", "partial"]

    def test_iter_queries_ignores_depth(self, engine):
        engine.start("a")
        engine.start("b")
        engine.query_start("SELECT 1")
        report = engine.finalize(show_depth=1)
        assert [(n.name, q.query) for n, q in report.iter_queries()] == [("b", "SELECT 1")]

    def test_report_keeps_tree_alive(self, clock):
        from stepprof.profiler import ProfilerEngine

        engine = ProfilerEngine(enabled=True, clock=clock)
        engine.start("a")
        clock.advance(3)
        report = engine.finalize()
        del engine

        node = report.nodes[0]
        assert node.start_offset == 0.0
        assert node.engine is report.engine


class TestStructuredRenderer:

    def test_dict_is_json_safe(self, finished_report):
        data = report_to_dict(finished_report)
        json.dumps(data)

        assert data["profile_id"] == "test-profile"
        assert data["duration_ms"] == 35.0
        assert data["query_count"] == 1
        request = data["steps"][0]
        assert request["name"] == "request"
        assert [c["name"] for c in request["children"]] == ["load user", "render"]
        query = request["children"][0]["queries"][0]
        assert query["type"] == "reader"
        assert query["duration_ms"] == 4.0

    def test_ghost_report(self):
        assert report_to_dict(GHOST) == {}


class TestTextRenderer:

    def test_contains_steps_and_queries(self, finished_report):
        text = render_text(finished_report, width=200)

        assert "Profile test-profile" in text
        assert "request" in text
        assert "partial" in text
        assert "Queries" in text
        assert "SELECT * FROM users WHERE id = [1]" in text
        assert "reader" in text

    def test_no_query_table_without_queries(self, engine):
        engine.start("a")
        text = render_text(engine.finalize())
        assert "Queries" not in text

    def test_show_depth_hides_deep_steps(self, engine):
        engine.start("outer")
        engine.start("hidden-inner")
        text = render_text(engine.finalize(show_depth=1))
        assert "outer" in text
        assert "hidden-inner" not in text

    def test_ghost_report(self):
        assert render_text(GHOST) == ""
