"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Health twin server and engine policy configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback: there is no auth layer in front of the tools.
    twin_host: str = "127.0.0.1"
    twin_port: int = 8001
    twin_log_level: str = "info"
    # Refuse non-loopback binds unless explicitly allowed.
    twin_allow_insecure_bind: bool = False

    # Trajectory simulation
    trajectory_horizon_months: int = 24

    # Treatment policy
    policy_top_k: int = 3
    # Empty -> bundled catalog (domains/health/catalogs/treatments.yaml)
    treatment_catalog_path: str = ""

    # Input windows
    max_vital_readings: int = 30
    max_cycle_records: int = 12


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
