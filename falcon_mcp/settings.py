from __future__ import annotations

from fastmcp.server.server import Transport
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # CrowdStrike
    crowdstrike_client_id: str = ""
    crowdstrike_client_secret: str = ""
    crowdstrike_base_url: str = "https://api.crowdstrike.com"
    crowdstrike_timeout: float = 30

    # MCP Server
    mcp_transport_mode: Transport = "stdio"
    mcp_host: str = "0.0.0.0"
    mcp_port: int = 8000
    mcp_http_path: str = "/mcp/"

    log_level: str = "INFO"

    @property
    def has_credentials(self) -> bool:
        return bool(self.crowdstrike_client_id and self.crowdstrike_client_secret)


settings = Settings()
