"""
Tool dispatcher: the single choke point every tool invocation flows through.

For each call the dispatcher:

1. consults the rate gate and rejects the call with ``RateLimitError`` without
   running the body when the quota is exhausted;
2. appends a ``ToolInvocationRecord`` to the process-wide rolling log;
3. runs the body in its own task and waits for it through ``asyncio.shield``;
4. finalizes the record exactly once with the outcome (``success``,
   ``user_error`` or ``internal_error``) and the measured duration.

User-facing errors (``ToolError`` subclasses) reach the caller unchanged.
Anything else is logged with its traceback to the ``webgate_mcp_server.tools``
logger and replaced by ``InternalError``, whose message carries no internal
detail.

If the caller goes away mid-call (the client disconnects, say) the body keeps
running to completion and the record is finalized from the task's
done-callback; only the result is lost.
"""
import asyncio
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from webgate_mcp_server.core.rate_limit import RateGate
from webgate_mcp_server.exceptions import InternalError, RateLimitError, ToolError, error_response_from_exception
from webgate_mcp_server.utils import get_logger

logger = get_logger("webgate_mcp_server.core.dispatcher")
tools_logger = get_logger("webgate_mcp_server.tools")

ProgressReporter = Callable[[float, Optional[float], Optional[str]], Awaitable[None]]
ToolBody = Callable[[Dict[str, Any], "ToolContext"], Awaitable[Any]]


class InvocationOutcome(str, Enum):
    SUCCESS = "success"
    USER_ERROR = "user_error"
    INTERNAL_ERROR = "internal_error"


@dataclass
class ToolInvocationRecord:
    """Accounting entry for one dispatched call."""
    tool_name: str
    client_name: str
    started_at: float
    duration: Optional[float] = None
    outcome: Optional[InvocationOutcome] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def finalized(self) -> bool:
        return self.outcome is not None

    def finalize(
        self,
        outcome: InvocationOutcome,
        duration: float,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> None:
        if self.outcome is not None:
            raise RuntimeError(f"Invocation record for '{self.tool_name}' is already finalized")
        self.outcome = outcome
        self.duration = duration
        self.error = error
        self.error_type = error_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.tool_name,
            "client": self.client_name,
            "started_at": self.started_at,
            "duration": round(self.duration, 4) if self.duration is not None else None,
            "outcome": self.outcome.value if self.outcome else "in_flight",
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class ToolContext:
    """Caller context handed to every tool body."""
    client_name: str = "unknown"
    client_info: Dict[str, Any] = field(default_factory=dict)
    progress_reporter: Optional[ProgressReporter] = None
    mcp_context: Any = None

    async def report_progress(self, progress: float, total: Optional[float] = None, message: Optional[str] = None):
        if self.progress_reporter is not None:
            await self.progress_reporter(progress, total, message)

    @classmethod
    def from_mcp(cls, ctx: Any) -> "ToolContext":
        """Build a ToolContext from a FastMCP ``Context`` (or None outside a request)."""
        if ctx is None:
            return cls()

        client_info: Dict[str, Any] = {}
        try:
            params = ctx.session.client_params
        except (AttributeError, ValueError):
            # No active request or no initialized session
            params = None
        if params is not None and getattr(params, "clientInfo", None) is not None:
            client_info = params.clientInfo.model_dump(exclude_none=True)

        async def reporter(progress: float, total: Optional[float], message: Optional[str]) -> None:
            await ctx.report_progress(progress, total, message)

        return cls(
            client_name=client_info.get("name") or "unknown",
            client_info=client_info,
            progress_reporter=reporter,
            mcp_context=ctx,
        )


class ToolMetrics:
    """Per-tool call counts and timings."""

    def __init__(self):
        self.total_calls = 0
        self.successful_calls = 0
        self.user_errors = 0
        self.internal_errors = 0
        self.total_duration = 0.0
        self.min_duration = float('inf')
        self.max_duration = 0.0

    def record_call(self, outcome: InvocationOutcome, duration: float) -> None:
        self.total_calls += 1
        if outcome == InvocationOutcome.SUCCESS:
            self.successful_calls += 1
        elif outcome == InvocationOutcome.USER_ERROR:
            self.user_errors += 1
        else:
            self.internal_errors += 1
        self.total_duration += duration
        self.min_duration = min(self.min_duration, duration)
        self.max_duration = max(self.max_duration, duration)

    def get_stats(self) -> Dict[str, Any]:
        if self.total_calls == 0:
            return {
                "total_calls": 0,
                "success_rate": 0.0,
                "average_duration": 0.0,
                "min_duration": 0.0,
                "max_duration": 0.0,
            }
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "user_errors": self.user_errors,
            "internal_errors": self.internal_errors,
            "success_rate": self.successful_calls / self.total_calls,
            "average_duration": self.total_duration / self.total_calls,
            "min_duration": self.min_duration,
            "max_duration": self.max_duration,
        }


def summarize_arguments(arguments: Dict[str, Any], max_length: int = 80) -> str:
    parts = []
    for key, value in arguments.items():
        text = repr(value)
        if len(text) > max_length:
            text = text[:max_length] + "..."
        parts.append(f"{key}={text}")
    return ", ".join(parts)


def summarize_result(result: Any) -> str:
    if isinstance(result, dict):
        return f"dict with keys: {list(result.keys())}"
    text = str(result)
    return (text[:100] + '...') if len(text) > 100 else text


class ToolDispatcher:
    """Rate-gated, instrumented invocation of tool bodies.

    Args:
        rate_gate: Quota shared by every tool; unlimited when omitted
        log_capacity: Number of invocation records kept in the rolling log
        clock: Wall clock for ``started_at``
        timer: Monotonic timer for durations
    """

    def __init__(
        self,
        rate_gate: Optional[RateGate] = None,
        log_capacity: int = 1000,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.rate_gate = rate_gate or RateGate()
        self.invocations: Deque[ToolInvocationRecord] = deque(maxlen=log_capacity)
        self.metrics: Dict[str, ToolMetrics] = {}
        self.denied_calls = 0
        self._clock = clock
        self._timer = timer

    async def dispatch(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        context: ToolContext,
        body: ToolBody,
    ) -> Any:
        """Run ``body(arguments, context)`` under the rate gate with full accounting.

        Raises:
            RateLimitError: The quota is exhausted; the body was not run
            ToolError: Raised by the body, passed through unchanged
            InternalError: The body failed unexpectedly
        """
        decision = self.rate_gate.check_and_increment()
        if not decision.allowed:
            self.denied_calls += 1
            retry_after = round(decision.retry_after, 1)
            tools_logger.warning(
                f"TOOL DENIED: {tool_name} (rate limit, retry in {retry_after}s)",
                emoji_key="rate_limit",
            )
            raise RateLimitError(
                f"Rate limit of {self.rate_gate.spec.limit} calls per {self.rate_gate.spec.period:g}s exceeded. "
                f"Try again in {retry_after} seconds.",
                retry_after=retry_after,
            )

        record = ToolInvocationRecord(tool_name=tool_name, client_name=context.client_name, started_at=self._clock())
        self.invocations.append(record)
        tools_logger.info(f"TOOL CALL: {tool_name}({summarize_arguments(arguments)})", emoji_key="tool")

        started = self._timer()
        task = asyncio.ensure_future(body(arguments, context))
        task.add_done_callback(lambda done: self._finalize(record, done, started))

        try:
            return await asyncio.shield(task)
        except ToolError:
            raise
        except asyncio.CancelledError:
            if not task.done():
                logger.info(f"Caller of '{tool_name}' went away; the call keeps running", emoji_key="tool")
            raise
        except Exception as e:
            raise InternalError(tool_name) from e

    def _finalize(self, record: ToolInvocationRecord, task: "asyncio.Future", started: float) -> None:
        duration = self._timer() - started
        error_type = None
        if task.cancelled():
            outcome, error = InvocationOutcome.INTERNAL_ERROR, "cancelled"
            tools_logger.error(f"TOOL ERROR: {record.tool_name} was cancelled after {duration:.2f}s")
        else:
            exc = task.exception()
            if exc is not None:
                error_type = error_response_from_exception(exc)["error"]["type"]
            if exc is None:
                outcome, error = InvocationOutcome.SUCCESS, None
                tools_logger.info(
                    f"TOOL SUCCESS: {record.tool_name} completed in {duration:.2f}s - "
                    f"Result: {summarize_result(task.result())}",
                    emoji_key="success",
                )
            elif isinstance(exc, ToolError):
                outcome, error = InvocationOutcome.USER_ERROR, str(exc)
                tools_logger.warning(f"TOOL ERROR: {record.tool_name} failed after {duration:.2f}s: {exc}")
            else:
                outcome, error = InvocationOutcome.INTERNAL_ERROR, f"{type(exc).__name__}: {exc}"
                tools_logger.error(
                    f"TOOL ERROR: {record.tool_name} failed after {duration:.2f}s: {error}",
                    exc_info=exc,
                )
        record.finalize(outcome, duration, error, error_type)
        self.metrics.setdefault(record.tool_name, ToolMetrics()).record_call(outcome, duration)

    def recent_invocations(self, limit: int = 20) -> List[ToolInvocationRecord]:
        if limit <= 0:
            return []
        return list(self.invocations)[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        outcomes = Counter(
            record.outcome.value if record.outcome else "in_flight" for record in self.invocations
        )
        return {
            "rate_limit": self.rate_gate.describe(),
            "denied_calls": self.denied_calls,
            "recorded_invocations": len(self.invocations),
            "outcomes": dict(outcomes),
            "tools": {name: metrics.get_stats() for name, metrics in sorted(self.metrics.items())},
        }
