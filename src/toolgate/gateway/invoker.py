"""Tool registry and the gate -> executor -> recorder pipeline."""

import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from toolgate.core.metrics import track_tool_call
from toolgate.gateway.gate import AuthContext, AuthGate, AuthResult, Credentials, RequestInfo
from toolgate.gateway.usage import UsageLogEntry, UsageRecorder

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ToolResult:
    """Result returned to the caller of a tool."""

    content: Any
    is_error: bool = False

    @classmethod
    def error(cls, body: Mapping[str, Any]) -> "ToolResult":
        return cls(content=dict(body), is_error=True)


ToolExecutor = Callable[[dict[str, Any]], Awaitable[ToolResult]]


class ToolRegistry:
    """Named tool executors. The executors themselves are opaque to the gateway."""

    def __init__(self) -> None:
        self._executors: dict[str, ToolExecutor] = {}

    def register(self, name: str, executor: ToolExecutor) -> None:
        if name in self._executors:
            raise ValueError(f"Tool already registered: {name}")
        self._executors[name] = executor

    @property
    def names(self) -> list[str]:
        return sorted(self._executors)

    def __contains__(self, name: object) -> bool:
        return name in self._executors

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Run a registered tool. Unknown tools produce an error result."""
        executor = self._executors.get(name)
        if executor is None:
            return ToolResult.error(
                {
                    "error": "UNKNOWN_TOOL",
                    "message": f"Unknown tool: {name}",
                    "available_tools": self.names,
                }
            )
        return await executor(arguments)


def _json_size(value: Any) -> int:
    return len(json.dumps(value, default=str).encode("utf-8"))


class ToolInvoker:
    """
    Runs one tool call through the gate, the executor and usage recording.

    Usage is recorded only for authenticated calls, in the background, after
    the result is available.
    """

    def __init__(self, gate: AuthGate, recorder: UsageRecorder | None, registry: ToolRegistry) -> None:
        self.gate = gate
        self.recorder = recorder
        self.registry = registry

    async def authorize(
        self,
        tool_name: str,
        credentials: Credentials | None = None,
        request: RequestInfo | None = None,
        required: bool | None = None,
    ) -> AuthResult:
        return await self.gate.authenticate(
            credentials=credentials,
            tool_name=tool_name,
            required=required,
            request=request,
        )

    async def invoke(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        credentials: Credentials | None = None,
        request: RequestInfo | None = None,
        required: bool | None = None,
    ) -> ToolResult:
        """
        Authorize and run a tool call.

        Args:
            tool_name: Name of the registered tool.
            arguments: Tool arguments.
            credentials: Credential carriers of the request.
            request: Caller metadata.
            required: Authentication requirement passed to the gate.

        Returns:
            The tool's result, or an error result describing the denial.
        """
        auth = await self.authorize(tool_name, credentials, request, required)
        if not auth.success:
            assert auth.error is not None
            return ToolResult.error(auth.error.to_dict())
        return await self.run(auth.context, tool_name, arguments or {})

    async def run(self, context: AuthContext, tool_name: str, arguments: dict[str, Any]) -> ToolResult:
        """
        Execute an admitted call and schedule its usage recording.

        Raises:
            Exception: Whatever the executor raised, after recording the failure.
        """
        request_size = _json_size(arguments)
        start = time.perf_counter()
        try:
            result = await self.registry.execute(tool_name, arguments)
        except Exception as e:
            duration = time.perf_counter() - start
            track_tool_call(tool_name, duration, success=False)
            logger.error("tool_execution_failed", tool_name=tool_name, error=str(e))
            self._record(context, tool_name, request_size, 0, duration, success=False, error_message=str(e))
            raise

        duration = time.perf_counter() - start
        success = not result.is_error
        track_tool_call(tool_name, duration, success=success)
        error_message = None
        if not success:
            error_message = (
                result.content.get("message") if isinstance(result.content, Mapping) else str(result.content)
            )
        self._record(
            context,
            tool_name,
            request_size,
            _json_size(result.content),
            duration,
            success=success,
            error_message=error_message,
        )
        return result

    def _record(
        self,
        context: AuthContext,
        tool_name: str,
        request_size: int,
        response_size: int,
        duration: float,
        *,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        if self.recorder is None or not context.authenticated or context.api_key_id is None:
            return
        self.recorder.record_in_background(
            UsageLogEntry(
                api_key_id=context.api_key_id,
                tool_name=tool_name,
                success=success,
                request_size=request_size,
                response_size=response_size,
                duration_ms=int(round(duration * 1000)),
                error_message=error_message,
                ip_address=context.request.ip_address,
                user_agent=context.request.user_agent,
            )
        )
