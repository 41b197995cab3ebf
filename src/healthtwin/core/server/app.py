"""Health Twin MCP Server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from healthtwin.core.audit.logger import AuditLogger
from healthtwin.core.config.settings import Settings, get_settings
from healthtwin.domains.health.domain_logic.risk_models import TreatmentTemplate
from healthtwin.domains.health.domain_logic.treatment_catalog import load_treatment_catalog
from healthtwin.domains.health.domain_logic.treatment_policy import PolicyConfig
from healthtwin.domains.health.tools.risk_engine_tools import register_risk_engine_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Health Twin Risk Engine"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    settings_override: Settings | None = None,
    catalog_override: list[TreatmentTemplate] | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the Health Twin MCP server.

    1. Creates the FastMCP server instance
    2. Loads the treatment catalog (bundled unless configured)
    3. Registers the engine tools
    """
    settings = settings_override or get_settings()

    # --- Server instance ---
    # Unexpected faults reach the client as a generic error, no internals.
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Deterministic health risk engine. Scores cardiovascular, diabetes, "
            "general and women's health risk with factor attribution, projects "
            "risk trajectories and ranks treatment options. Not a diagnostic system."
        ),
        mask_error_details=True,
    )

    # --- Treatment catalog ---
    if catalog_override is not None:
        catalog = list(catalog_override)
    else:
        catalog = load_treatment_catalog(settings.treatment_catalog_path or None)

    policy = PolicyConfig(top_k=settings.policy_top_k)
    audit_logger = audit_logger_override or AuditLogger()

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "treatments_loaded": len(catalog),
            "trajectory_horizon_months": settings.trajectory_horizon_months,
            "policy_top_k": policy.top_k,
        }

    register_risk_engine_tools(server, settings, catalog, policy, audit_logger)
    logger.info("Risk engine tools registered (%d treatment templates)", len(catalog))

    return server


# Module-level instance for FastMCP discovery ("...app.py:mcp").
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
