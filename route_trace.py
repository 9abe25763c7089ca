"""
Request-scoped tracing for routing calls.

Provides a thread-local TraceContext that records:
  - Per-stage timing (detour search, route analysis, ...)
  - Per-outbound-call timing (service, endpoint, elapsed_ms, status,
    provider status such as "OK", "OVER_QUERY_LIMIT", "cache_hit")
  - A one-line summary at the end of the operation

Usage:
    ctx = TraceContext(trace_id="detour-abc123")
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

    # In API clients:
    trace = get_trace()
    if trace:
        trace.record_api_call(...)
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class APICallRecord:
    """One outbound call to the routing provider (or a cache hit for one)."""
    service: str          # "google_directions" | "detour_cache"
    endpoint: str         # "directions", "waypoint_route", ...
    elapsed_ms: int
    status_code: int
    provider_status: str = ""
    stage: str = ""


@dataclass
class StageRecord:
    stage_name: str
    elapsed_ms: int = 0
    api_calls_made: int = 0
    error_class: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single detour search or route analysis."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    _current_stage: str = ""
    _stage_start: float = 0.0

    @property
    def current_stage(self) -> str:
        return self._current_stage

    def start_stage(self, name: str):
        self._current_stage = name
        self._stage_start = time.time()

    def end_stage(self, error_class: str = ""):
        name = self._current_stage
        if not name:
            return
        rec = StageRecord(
            stage_name=name,
            elapsed_ms=int((time.time() - self._stage_start) * 1000),
            api_calls_made=sum(1 for c in self.api_calls if c.stage == name),
            error_class=error_class,
        )
        self.stages.append(rec)
        self._current_stage = ""
        logger.info(
            "  [stage] trace=%s %s %s %dms api_calls=%d",
            self.trace_id, name, "ERR" if error_class else "OK",
            rec.elapsed_ms, rec.api_calls_made,
        )

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        self.api_calls.append(APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            stage=self._current_stage,
        ))
        logger.info(
            "  [api] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            self._current_stage or "-",
            service,
            endpoint,
            elapsed_ms,
            status_code,
            provider_status,
        )

    def summary_dict(self) -> Dict[str, Any]:
        errored = [s for s in self.stages if s.error_class]
        cache_hits = sum(1 for c in self.api_calls if c.provider_status == "cache_hit")
        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": int((time.time() - self.request_start) * 1000),
            "total_api_calls": len(self.api_calls) - cache_hits,
            "cache_hits": cache_hits,
            "stages": len(self.stages),
            "stages_errored": len(errored),
            "final_outcome": "error" if errored else "success",
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d cache_hits=%d "
            "stages=%d errored=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["cache_hits"],
            s["stages"],
            s["stages_errored"],
            s["final_outcome"],
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current thread's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None
