"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Allocator configuration loaded from environment variables."""

    model_config = {"env_prefix": "DEVLEASE_", "frozen": True}

    # Device cloud endpoint + credentials
    cloud_url: str = "https://cloud.testdroid.com"
    cloud_api_prefix: str = "/api/v2"
    cloud_username: str = ""
    cloud_password: str = ""
    cloud_client_id: str = "testdroid-cloud-api"
    # Optional outbound HTTP proxy, e.g. "http://proxy.local:3128"
    cloud_http_proxy: str = ""
    http_timeout_seconds: int = 30

    # Allocation request (macros like ${BUILD_ID} are expanded from the environment)
    build_url: str = ""
    mem_total: str = "0"
    # Format: "Group|Value;Group2|Value2"
    device_filters: str = ""

    # Label group holding "<mem_total>_<build_url>" identifiers
    build_identifier_group: str = "Build Identifier"

    # Flashing
    flash_project_name: str = "flash-fxos"
    flash_build_url_param: str = "FLAME_ZIP_URL"
    flash_mem_total_param: str = "MEM_TOTAL"
    flash_timeout_seconds: int = 600
    flash_poll_interval_seconds: int = 10
    # Outer budget: locate -> (flash) -> acquire is tried flash_retries + 1 times
    flash_retries: int = 3

    # Device sessions
    session_running_timeout_seconds: int = 60
    session_poll_interval_seconds: int = 5
    session_conflict_status: int = 400

    # Proxy discovery
    proxy_timeout_seconds: int = 300
    proxy_poll_interval_seconds: int = 10

    # Workspace outputs
    workspace_dir: str = "."
    device_data_filename: str = "device.json"
    env_file: str = ""

    @property
    def cloud_host(self) -> str:
        return urlparse(self.cloud_url).hostname or ""

    @property
    def max_attempts(self) -> int:
        return max(1, self.flash_retries + 1)


def get_settings() -> Settings:
    """Factory, overridable in tests."""
    return Settings()
