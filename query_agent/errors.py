"""
Exception hierarchy for the query pipeline.

Everything below QueryAgentError is collapsed into the generic 500 response
at the HTTP boundary. Malformed request bodies never get this far: FastAPI
rejects them with RequestValidationError, which the handler maps to 400.
"""


class QueryAgentError(Exception):
    """Base class for pipeline errors."""


class MCPToolError(QueryAgentError):
    """Raised when the MCP tool service cannot be reached or misbehaves."""


class ToolReportedError(QueryAgentError):
    """A remote tool ran but reported a failure (e.g. a SQL error).

    Unlike MCPToolError this is recoverable: the message goes back to the
    model so it can correct its next call.
    """

    def __init__(self, tool_name: str, detail):
        super().__init__(f"{tool_name}: {detail}")
        self.tool_name = tool_name
        self.detail = detail


class ProviderError(QueryAgentError):
    """Raised when the LLM provider call fails or returns nothing usable."""


class MalformedOutputError(QueryAgentError):
    """Raised when the model's final text is not a valid result payload."""

    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text