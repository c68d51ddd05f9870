"""Flash (provision) a build image onto a pool device via a cloud project."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from devlease.allocator.interfaces import Locator
from devlease.cloud.interfaces import DeviceCloud
from devlease.shared.enums import DeviceRunStatus, RunState
from devlease.shared.exceptions import CloudError, NoMatchingDeviceError, WorkspaceError
from devlease.shared.models import DeviceFilter, ProvisioningJob, ProvisioningRun
from devlease.shared.urls import remove_bewit
from devlease.shared.workspace import WorkspaceWriter

logger = logging.getLogger(__name__)


class Provisioner:
    """Run the flash project against one device and report whether it worked.

    Implements the ``DeviceProvisioner`` protocol.
    """

    def __init__(
        self,
        cloud: DeviceCloud,
        locator: Locator,
        *,
        workspace: WorkspaceWriter | None = None,
        build_url_param: str = "FLAME_ZIP_URL",
        mem_total_param: str = "MEM_TOTAL",
        poll_interval: int = 10,
    ) -> None:
        self._cloud = cloud
        self._locator = locator
        self._workspace = workspace
        self._build_url_param = build_url_param
        self._mem_total_param = mem_total_param
        self._poll_interval = poll_interval

    async def find_job(self, job_name: str) -> ProvisioningJob | None:
        projects = await self._cloud.search_projects(job_name)
        for project in projects:
            if project.name == job_name:
                return project
        return projects[0] if projects else None

    async def provision(
        self,
        filters: Sequence[DeviceFilter],
        build_url: str,
        mem_total: int,
        job_name: str,
        timeout: int,
    ) -> bool:
        """Flash ``build_url`` and wait for the run to finish.

        Returns False for a missing flash project, a run that does not finish
        within ``timeout`` seconds, or a run whose target device failed.
        """
        throttled = f" and memory throttled at {mem_total}MB" if mem_total > 0 else ""
        logger.info("flashing device with %s%s", remove_bewit(build_url), throttled)

        job = await self.find_job(job_name)
        if job is None:
            logger.error("unable to find flash project: %s", job_name)
            return False

        run = await self._cloud.create_run(job.id)
        try:
            await self._reset_parameters(job.id, run.id, build_url=build_url, mem_total=mem_total)

            device = await self._locator.locate(filters, allow_locked_fallback=True)
            if device is None:
                raise NoMatchingDeviceError(f"no online device matches {_describe(filters)}")

            logger.info("starting flash run %d on device %s (id=%d)", run.id, device.display_name, device.id)
            run = await self._cloud.start_run(run.id, [device.id])

            if not await self._wait_finished(job.id, run, timeout):
                return False
        except asyncio.CancelledError:
            logger.warning("flash run %d interrupted, aborting", run.id)
            try:
                await self._cloud.abort_run(job.id, run.id)
            except CloudError as exc:
                logger.error("failed to abort flash run %d: %s", run.id, exc)
            raise
        return await self._check_device_outcome(job.id, run.id, device.id)

    async def _reset_parameters(self, project_id: int, run_id: int, *, build_url: str, mem_total: int) -> None:
        """Drop every existing parameter, then set exactly build URL + memory total."""
        for parameter in await self._cloud.list_run_parameters(project_id, run_id):
            await self._cloud.delete_run_parameter(project_id, run_id, parameter.id)
        await self._cloud.create_run_parameter(project_id, run_id, self._build_url_param, build_url)
        await self._cloud.create_run_parameter(project_id, run_id, self._mem_total_param, str(mem_total))

    async def _wait_finished(self, project_id: int, run: ProvisioningRun, timeout: int) -> bool:
        elapsed = 0
        while run.state != RunState.FINISHED:
            if run.state == RunState.ABORTED:
                logger.error("flash run %d was aborted", run.id)
                return False

            await asyncio.sleep(self._poll_interval)
            elapsed += self._poll_interval

            if elapsed >= timeout:
                run = await self._cloud.get_run(project_id, run.id)
                # Only a run still queued is aborted; a running flash is left to finish.
                if run.state == RunState.WAITING:
                    logger.warning("flash run %d still waiting after %ds, aborting", run.id, timeout)
                    await self._cloud.abort_run(project_id, run.id)
                logger.error("flash run %d did not finish in %d seconds", run.id, timeout)
                return False

            run = await self._cloud.get_run(project_id, run.id)
            logger.debug("flash run %d state=%s elapsed=%ds", run.id, run.state.value, elapsed)

        logger.info("flash run %d finished", run.id)
        return True

    async def _check_device_outcome(self, project_id: int, run_id: int, device_id: int) -> bool:
        device_runs = await self._cloud.list_device_runs(project_id, run_id)
        target = next((dr for dr in device_runs if dr.device_id == device_id), None)
        if target is None or target.run_status != DeviceRunStatus.FAILED:
            return True

        logger.error("flashing failed on device %d (device run %d)", device_id, target.id)
        try:
            log_text = await self._cloud.get_device_run_log(project_id, run_id, target.id)
        except CloudError as exc:
            logger.error("could not fetch flash log for device run %d: %s", target.id, exc)
            return False

        if self._workspace is not None:
            try:
                path = await self._workspace.write(f"flash-{run_id}-{device_id}.log", log_text)
                logger.info("flash log saved to %s", path)
            except WorkspaceError as exc:
                logger.error("could not save flash log: %s", exc)
        return False


def _describe(filters: Sequence[DeviceFilter]) -> str:
    if not filters:
        return "any device"
    return ", ".join(f"{f.group_name}={f.label_value}" for f in filters)
