"""Tests for route_trace.py — thread-local trace context."""

import threading

from route_trace import TraceContext, clear_trace, get_trace, set_trace


class TestTraceContext:
    def test_stage_counts_its_own_calls(self):
        ctx = TraceContext(trace_id="t")
        ctx.start_stage("detour_search")
        ctx.record_api_call("google_directions", "waypoint_route", 120, 200, "OK")
        ctx.record_api_call("google_directions", "directions", 80, 200, "OK")
        ctx.end_stage()
        ctx.record_api_call("google_directions", "directions", 80, 200, "OK")

        assert ctx.stages[0].stage_name == "detour_search"
        assert ctx.stages[0].api_calls_made == 2
        assert ctx.api_calls[-1].stage == ""

    def test_end_without_start_is_noop(self):
        ctx = TraceContext(trace_id="t")
        ctx.end_stage()
        assert ctx.stages == []

    def test_summary_separates_cache_hits(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_api_call("detour_cache", "waypoint_route", 0, 200, "cache_hit")
        ctx.record_api_call("google_directions", "waypoint_route", 90, 200, "OK")
        ctx.start_stage("analysis")
        ctx.end_stage("RoutingError")

        summary = ctx.summary_dict()
        assert summary["total_api_calls"] == 1
        assert summary["cache_hits"] == 1
        assert summary["stages_errored"] == 1
        assert summary["final_outcome"] == "error"

    def test_log_summary(self, caplog):
        ctx = TraceContext(trace_id="abc")
        with caplog.at_level("INFO", logger="route_trace"):
            ctx.log_summary()
        assert "[trace-summary] trace=abc" in caplog.text


class TestThreadLocal:
    def test_set_get_clear(self):
        ctx = TraceContext(trace_id="t")
        set_trace(ctx)
        assert get_trace() is ctx
        clear_trace()
        assert get_trace() is None

    def test_not_shared_between_threads(self):
        set_trace(TraceContext(trace_id="main"))
        seen = []
        thread = threading.Thread(target=lambda: seen.append(get_trace()))
        thread.start()
        thread.join()
        assert seen == [None]
