"""Health Twin server entry point: ``python -m healthtwin.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from healthtwin.core.config.settings import Settings, get_settings
from healthtwin.core.server.app import create_app

logger = logging.getLogger(__name__)


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def _log_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise RuntimeError(
            f"Unknown TWIN_LOG_LEVEL {name!r}; use debug, info, warning or error."
        )
    return level


def _describe_engine(settings: Settings) -> str:
    catalog = settings.treatment_catalog_path or "bundled"
    return (
        f"horizon={settings.trajectory_horizon_months}mo top_k={settings.policy_top_k} "
        f"catalog={catalog} windows={settings.max_vital_readings} vitals/"
        f"{settings.max_cycle_records} cycles"
    )


def run() -> None:
    """Start the Health Twin MCP server with Streamable HTTP transport.

    Raises:
        RuntimeError: Unknown log level, or a non-loopback bind without
            TWIN_ALLOW_INSECURE_BIND.
    """
    settings = get_settings()
    logging.basicConfig(level=_log_level(settings.twin_log_level))

    if not settings.twin_allow_insecure_bind and not _is_loopback_host(settings.twin_host):
        raise RuntimeError(
            "Refusing to bind the Health Twin server to a non-loopback host without an "
            "auth layer. Set TWIN_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    if settings.twin_allow_insecure_bind and not _is_loopback_host(settings.twin_host):
        logger.warning("Binding to %s without an auth layer", settings.twin_host)

    mcp = create_app(settings_override=settings)
    logger.info(
        "Starting Health Twin server on %s:%d (%s)",
        settings.twin_host,
        settings.twin_port,
        _describe_engine(settings),
    )
    mcp.run(
        transport="streamable-http",
        host=settings.twin_host,
        port=settings.twin_port,
    )


if __name__ == "__main__":
    run()
