"""
Centralized configuration using Pydantic Settings
Loads from environment variables and .env file
"""

from typing import List, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings
    All settings can be overridden by environment variables
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =============================================
    # LLM PROVIDER
    # =============================================
    google_api_key: Optional[SecretStr] = Field(default=None, description="Google AI API key")
    llm_model: str = Field(default="gemini-2.0-flash", description="Gemini model identifier")
    llm_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    llm_max_output_tokens: int = Field(default=4096, gt=0)
    llm_max_retries: int = Field(default=3, ge=1, description="Attempts on rate limit / overload")
    llm_max_wait: int = Field(default=30, gt=0, description="Max backoff between attempts (seconds)")

    # =============================================
    # MCP TOOL SERVICE
    # =============================================
    mcp_server_url: str = Field(
        default="https://ai-db-query.akramansari1433.workers.dev/sse",
        description="Remote MCP endpoint exposing the database tools",
    )
    mcp_transport: Literal["sse", "streamable-http"] = Field(default="sse")
    schema_tool_name: str = Field(default="getTablesInfoPostgres")
    query_tool_name: str = Field(default="queryDatabasePostgres")

    # =============================================
    # ORCHESTRATION
    # =============================================
    max_rounds: int = Field(default=10, ge=1, description="Max model turns per request")
    output_repair_attempts: int = Field(default=1, ge=0)
    request_timeout_seconds: float = Field(default=120.0, gt=0)
    tool_timeout_seconds: float = Field(default=30.0, gt=0)

    # =============================================
    # SERVICE
    # =============================================
    service_name: str = Field(default="query-agent")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    environment: str = Field(default="production")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:3001"]
    )

    # =============================================
    # LOGGING
    # =============================================
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    @property
    def api_key(self) -> Optional[str]:
        if self.google_api_key is None:
            return None
        return self.google_api_key.get_secret_value() or None


def get_settings() -> Settings:
    return Settings()
