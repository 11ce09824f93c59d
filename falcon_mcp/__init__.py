import logging
import sys

from falcon_mcp.server import mcp
from .log import configure_logging
from .settings import settings

logger = logging.getLogger(__name__)


def main():
    configure_logging(settings.log_level)
    if not settings.has_credentials:
        logger.error(
            "CROWDSTRIKE_CLIENT_ID and CROWDSTRIKE_CLIENT_SECRET environment variables are required"
        )
        sys.exit(1)
    logger.info("CrowdStrike MCP server starting (transport=%s, base_url=%s)",
                settings.mcp_transport_mode, settings.crowdstrike_base_url)
    if settings.mcp_transport_mode == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport=settings.mcp_transport_mode, host=settings.mcp_host,
                port=settings.mcp_port, path=settings.mcp_http_path)


if __name__ == "__main__":
    main()
