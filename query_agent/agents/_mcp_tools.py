"""
MCP Tool Bridge - Connects the orchestration loop to the remote MCP tool service.

One ToolSession per request: opened before the first model turn, closed
exactly once on the way out. Remote tools are exposed as RemoteTool
descriptors whose execute() goes through wrap_tool(), which repairs the
null-argument case models produce for parameterless tools.
"""
from __future__ import annotations

import json
from contextlib import AsyncExitStack
from dataclasses import replace
from typing import Any, Dict, List, Optional

import structlog
from fastmcp import Client
from fastmcp.client.transports import SSETransport, StreamableHttpTransport

from ..config import Settings
from ..errors import MCPToolError, ToolReportedError
from ..models import RemoteTool, ToolCallOptions

logger = structlog.get_logger(__name__)


def wrap_tool(tool: RemoteTool) -> RemoteTool:
    """Return a copy of `tool` whose execute() never receives None arguments.

    Non-null arguments and the execution options are passed through as-is,
    and whatever the underlying execute returns or raises is surfaced
    unchanged.
    """
    inner = tool.execute

    async def execute(args: Optional[Dict[str, Any]], options: ToolCallOptions) -> Any:
        safe_args = {} if args is None else args
        return await inner(safe_args, options)

    return replace(tool, execute=execute)


def normalize_result(result: Any) -> Any:
    """Collapse an MCP CallToolResult into a JSON-able value.

    Structured content wins; otherwise text blocks are decoded as JSON when
    they parse and kept as text when they don't.
    """
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return structured

    blocks: List[Any] = []
    for block in getattr(result, "content", None) or []:
        text = getattr(block, "text", None)
        if text is None:
            blocks.append({"type": getattr(block, "type", "unknown")})
            continue
        try:
            blocks.append(json.loads(text))
        except ValueError:
            blocks.append(text)

    if not blocks:
        return None
    if len(blocks) == 1:
        return blocks[0]
    return blocks


class ToolSession:
    """
    Request-scoped connection to the MCP tool service.

    Usage:
        async with ToolSession.from_settings(settings) as session:
            tools = await session.list_tools()
            result = await tools["queryDatabasePostgres"].execute({"sql": "..."}, options)
    """

    def __init__(self, url: str, transport: str = "sse", timeout: Optional[float] = None):
        self.url = url
        self.transport = transport
        self.timeout = timeout
        self._stack: Optional[AsyncExitStack] = None
        self._client: Optional[Client] = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolSession":
        return cls(
            url=settings.mcp_server_url,
            transport=settings.mcp_transport,
            timeout=settings.tool_timeout_seconds,
        )

    def _build_client(self) -> Client:
        if self.transport == "streamable-http":
            transport = StreamableHttpTransport(self.url)
        else:
            transport = SSETransport(self.url)
        return Client(transport, timeout=self.timeout)

    @property
    def connected(self) -> bool:
        return self._client is not None and not self._closed

    async def connect(self) -> "ToolSession":
        if self._client is not None:
            raise MCPToolError("session already opened")

        stack = AsyncExitStack()
        client = self._build_client()
        try:
            await stack.enter_async_context(client)
        except Exception as exc:
            await stack.aclose()
            raise MCPToolError(f"cannot connect to MCP server at {self.url}: {exc}") from exc

        self._stack = stack
        self._client = client
        logger.info("mcp_connected", url=self.url, transport=self.transport)
        return self

    async def close(self) -> None:
        if self._stack is None or self._closed:
            logger.debug("mcp_close_skipped", url=self.url)
            return
        self._closed = True
        try:
            await self._stack.aclose()
        except Exception as exc:
            raise MCPToolError(f"error closing MCP connection: {exc}") from exc
        finally:
            self._client = None
        logger.info("mcp_closed", url=self.url)

    async def __aenter__(self) -> "ToolSession":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def list_tools(self) -> Dict[str, RemoteTool]:
        """Enumerate remote tools as wrapped descriptors keyed by name."""
        client = self._require_client()
        try:
            listed = await client.list_tools()
        except Exception as exc:
            raise MCPToolError(f"cannot list MCP tools: {exc}") from exc

        tools: Dict[str, RemoteTool] = {}
        for item in listed:
            schema = getattr(item, "inputSchema", None) or {}
            tool = RemoteTool(
                name=item.name,
                description=getattr(item, "description", None) or "",
                parameters=schema if isinstance(schema, dict) else {},
                execute=self._executor(item.name),
            )
            tools[item.name] = wrap_tool(tool)

        logger.info("mcp_tools_listed", count=len(tools), tools=sorted(tools))
        return tools

    def _executor(self, name: str):
        async def execute(args: Optional[Dict[str, Any]], options: ToolCallOptions) -> Any:
            return await self.call_tool(name, args, options)
        return execute

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]],
        options: ToolCallOptions,
    ) -> Any:
        """Call a remote tool.

        Raises ToolReportedError when the tool itself flags an error and
        MCPToolError when the call could not be carried out.
        """
        client = self._require_client()
        try:
            result = await client.call_tool_mcp(name, arguments, timeout=options.timeout)
        except Exception as exc:
            raise MCPToolError(f"MCP tool {name} failed: {exc}") from exc

        output = normalize_result(result)
        if getattr(result, "isError", False):
            raise ToolReportedError(name, output)
        return output

    def _require_client(self) -> Client:
        if not self.connected:
            raise MCPToolError("MCP session is not open")
        return self._client
