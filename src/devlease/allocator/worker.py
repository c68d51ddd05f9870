"""CI entry point: lease a device, run the build command against it, release."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Callable, Mapping, Sequence
from functools import partial

from pydantic import ValidationError

from devlease.allocator.locator import DeviceLocator
from devlease.allocator.orchestrator import Orchestrator
from devlease.allocator.provisioner import Provisioner
from devlease.allocator.proxies import ProxyResolver
from devlease.allocator.sessions import SessionManager
from devlease.cloud.client import TestdroidClient
from devlease.cloud.interfaces import DeviceCloud
from devlease.config import Settings, get_settings
from devlease.shared.exceptions import CloudError, ConfigurationError, DevLeaseError, WorkspaceError
from devlease.shared.macros import expand_macros
from devlease.shared.models import AllocationRequest, DeviceFilter, SessionDescriptor
from devlease.shared.workspace import WorkspaceWriter

logger = logging.getLogger(__name__)


def parse_device_filters(raw: str) -> tuple[DeviceFilter, ...]:
    """Parse ``"Group|Value;Group2|Value2"`` into filters."""
    filters: list[DeviceFilter] = []
    for token in raw.split(";"):
        stripped = token.strip()
        if not stripped:
            continue
        group, sep, value = stripped.partition("|")
        if not sep or not group.strip() or not value.strip():
            raise ConfigurationError(f"device filter must look like 'Group|Value': {stripped!r}")
        filters.append(DeviceFilter(group_name=group.strip(), label_value=value.strip()))
    return tuple(filters)


def build_request(settings: Settings, environ: Mapping[str, str]) -> AllocationRequest:
    """Expand build macros and validate the allocation request."""
    build_url = expand_macros(settings.build_url, environ).strip()
    raw_mem_total = expand_macros(settings.mem_total, environ).strip() or "0"
    filters = parse_device_filters(expand_macros(settings.device_filters, environ))

    try:
        mem_total = int(raw_mem_total)
    except ValueError as exc:
        raise ConfigurationError(f"memory allocation must be a number: {raw_mem_total!r}") from exc

    try:
        return AllocationRequest(build_url=build_url, mem_total=mem_total, filters=filters)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid allocation request: {exc}") from exc


def create_cloud(settings: Settings) -> TestdroidClient:
    proxy = settings.cloud_http_proxy or None
    logger.info(
        "connecting to %s as %s%s",
        settings.cloud_url,
        settings.cloud_username,
        f" using proxy {proxy}" if proxy else "",
    )
    return TestdroidClient(
        settings.cloud_url,
        settings.cloud_username,
        settings.cloud_password,
        api_prefix=settings.cloud_api_prefix,
        client_id=settings.cloud_client_id,
        timeout=settings.http_timeout_seconds,
        proxy=proxy,
    )


def build_orchestrator(
    settings: Settings,
    cloud: DeviceCloud,
    *,
    cloud_factory: Callable[[], DeviceCloud] | None = None,
) -> Orchestrator:
    """Wire all allocator components from settings."""
    workspace = WorkspaceWriter(settings.workspace_dir)
    locator = DeviceLocator(cloud)
    return Orchestrator(
        cloud=cloud,
        locator=locator,
        provisioner=Provisioner(
            cloud,
            locator,
            workspace=workspace,
            build_url_param=settings.flash_build_url_param,
            mem_total_param=settings.flash_mem_total_param,
            poll_interval=settings.flash_poll_interval_seconds,
        ),
        sessions=SessionManager(
            cloud,
            client_factory=cloud_factory,
            poll_interval=settings.session_poll_interval_seconds,
            conflict_status=settings.session_conflict_status,
        ),
        proxies=ProxyResolver(cloud, host=settings.cloud_host, poll_interval=settings.proxy_poll_interval_seconds),
        workspace=workspace,
        build_identifier_group=settings.build_identifier_group,
        flash_job_name=settings.flash_project_name,
        max_attempts=settings.max_attempts,
        flash_timeout_seconds=settings.flash_timeout_seconds,
        session_timeout_seconds=settings.session_running_timeout_seconds,
        proxy_timeout_seconds=settings.proxy_timeout_seconds,
        device_data_filename=settings.device_data_filename,
    )


def render_env_file(descriptor: SessionDescriptor) -> str:
    return "".join(f"{key}={value}\n" for key, value in descriptor.to_env().items())


async def run_command(
    settings: Settings,
    command: Sequence[str],
    *,
    environ: Mapping[str, str] | None = None,
    cloud_factory: Callable[[], DeviceCloud] | None = None,
) -> int:
    """Lease a device, run ``command`` with the session environment, release.

    Returns:
        The command's exit code, 1 when allocation fails, 2 for a usage or
        configuration error, 127 when the command cannot be started.
    """
    if not command:
        logger.error("no command given; usage: devlease-run -- <command> [args...]")
        return 2

    env_source = dict(os.environ if environ is None else environ)
    try:
        request = build_request(settings, env_source)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 2

    factory = cloud_factory or partial(create_cloud, settings)
    cloud = factory()
    try:
        await cloud.authenticate()
    except CloudError as exc:
        logger.error("connection failed! %s", exc)
        return 1

    orchestrator = build_orchestrator(settings, cloud, cloud_factory=factory)
    try:
        allocation = await orchestrator.allocate(request)
    except DevLeaseError as exc:
        logger.error("device allocation failed: %s", exc)
        return 1

    try:
        if settings.env_file:
            try:
                await WorkspaceWriter(settings.workspace_dir).write(
                    settings.env_file, render_env_file(allocation.descriptor)
                )
            except WorkspaceError as exc:
                logger.error("could not write session env file: %s", exc)
                return 2

        child_env = {**env_source, **allocation.descriptor.to_env()}
        logger.info("running %s on session %d", " ".join(command), allocation.descriptor.session_id)
        try:
            proc = await asyncio.create_subprocess_exec(*command, env=child_env)
        except FileNotFoundError:
            logger.error("command not found: %s", command[0])
            return 127

        try:
            return await proc.wait()
        except asyncio.CancelledError:
            logger.warning("interrupted, terminating %s", command[0])
            proc.terminate()
            raise
    finally:
        await allocation.teardown()
        await cloud.aclose()


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    command = list(sys.argv[1:] if argv is None else argv)
    if command and command[0] == "--":
        command = command[1:]
    raise SystemExit(asyncio.run(run_command(get_settings(), command)))


if __name__ == "__main__":
    main()
