"""Tests for Provisioner."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, call

import pytest

from devlease.allocator.provisioner import Provisioner
from devlease.shared.enums import DeviceRunStatus, RunState
from devlease.shared.exceptions import CloudApiError, NoMatchingDeviceError
from devlease.shared.models import (
    Device,
    DeviceFilter,
    DeviceRun,
    ProvisioningJob,
    ProvisioningRun,
    RunParameter,
)
from devlease.shared.workspace import WorkspaceWriter

BUILD_URL = "https://builds.test/b1.zip"


def _run(state: RunState) -> ProvisioningRun:
    return ProvisioningRun(id=42, project_id=3, state=state)


@pytest.fixture
def flash_cloud(mock_cloud: AsyncMock) -> AsyncMock:
    mock_cloud.search_projects.return_value = [ProvisioningJob(id=3, name="flash-fxos")]
    mock_cloud.create_run.return_value = _run(RunState.CREATED)
    mock_cloud.list_run_parameters.return_value = [
        RunParameter(id=1, key="FLAME_ZIP_URL", value="old"),
        RunParameter(id=2, key="STALE", value="x"),
    ]
    mock_cloud.start_run.return_value = _run(RunState.WAITING)
    mock_cloud.get_run.side_effect = [_run(RunState.RUNNING), _run(RunState.FINISHED)]
    mock_cloud.list_device_runs.return_value = [DeviceRun(id=7, device_id=101, run_status=DeviceRunStatus.PASSED)]
    return mock_cloud


@pytest.fixture
def mock_locator(free_device: Device) -> AsyncMock:
    mock = AsyncMock()
    mock.locate.return_value = free_device
    return mock


@pytest.fixture
def provisioner(flash_cloud: AsyncMock, mock_locator: AsyncMock, tmp_path: Path) -> Provisioner:
    return Provisioner(flash_cloud, mock_locator, workspace=WorkspaceWriter(tmp_path), poll_interval=0)


class TestFindJob:
    async def test_prefers_exact_name(self, provisioner: Provisioner, flash_cloud: AsyncMock) -> None:
        flash_cloud.search_projects.return_value = [
            ProvisioningJob(id=1, name="flash-fxos-old"),
            ProvisioningJob(id=3, name="flash-fxos"),
        ]

        job = await provisioner.find_job("flash-fxos")

        assert job is not None
        assert job.id == 3

    async def test_falls_back_to_first_result(self, provisioner: Provisioner, flash_cloud: AsyncMock) -> None:
        flash_cloud.search_projects.return_value = [ProvisioningJob(id=1, name="flash-fxos-old")]

        job = await provisioner.find_job("flash-fxos")

        assert job is not None
        assert job.id == 1

    async def test_missing(self, provisioner: Provisioner, flash_cloud: AsyncMock) -> None:
        flash_cloud.search_projects.return_value = []

        assert await provisioner.find_job("flash-fxos") is None


class TestProvision:
    async def test_successful_flash(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, mock_locator: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        ok = await provisioner.provision([model_filter], BUILD_URL, 512, "flash-fxos", 600)

        assert ok is True
        mock_locator.locate.assert_awaited_once_with([model_filter], allow_locked_fallback=True)
        flash_cloud.start_run.assert_awaited_once_with(42, [101])

    async def test_parameters_reset_to_exactly_two(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        await provisioner.provision([model_filter], BUILD_URL, 512, "flash-fxos", 600)

        assert flash_cloud.delete_run_parameter.await_args_list == [call(3, 42, 1), call(3, 42, 2)]
        assert flash_cloud.create_run_parameter.await_args_list == [
            call(3, 42, "FLAME_ZIP_URL", BUILD_URL),
            call(3, 42, "MEM_TOTAL", "512"),
        ]

    async def test_missing_job_returns_false(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        flash_cloud.search_projects.return_value = []

        assert await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 600) is False
        flash_cloud.create_run.assert_not_awaited()

    async def test_no_matching_device_raises(
        self, provisioner: Provisioner, mock_locator: AsyncMock, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        mock_locator.locate.return_value = None

        with pytest.raises(NoMatchingDeviceError, match="Model=Flame"):
            await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 600)

        flash_cloud.start_run.assert_not_awaited()

    async def test_aborted_run_fails(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        flash_cloud.start_run.return_value = _run(RunState.ABORTED)

        assert await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 600) is False
        flash_cloud.list_device_runs.assert_not_awaited()

    async def test_timeout_aborts_run_still_waiting(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        flash_cloud.get_run.side_effect = None
        flash_cloud.get_run.return_value = _run(RunState.WAITING)

        assert await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 0) is False
        flash_cloud.abort_run.assert_awaited_once_with(3, 42)

    async def test_timeout_leaves_running_flash_alone(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        flash_cloud.get_run.side_effect = None
        flash_cloud.get_run.return_value = _run(RunState.RUNNING)

        assert await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 0) is False
        flash_cloud.abort_run.assert_not_awaited()

    async def test_failed_device_run_saves_log(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter, tmp_path: Path
    ) -> None:
        flash_cloud.list_device_runs.return_value = [
            DeviceRun(id=8, device_id=999, run_status=DeviceRunStatus.PASSED),
            DeviceRun(id=7, device_id=101, run_status=DeviceRunStatus.FAILED),
        ]
        flash_cloud.get_device_run_log.return_value = "fastboot: error"

        assert await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 600) is False
        flash_cloud.get_device_run_log.assert_awaited_once_with(3, 42, 7)
        assert (tmp_path / "flash-42-101.log").read_text() == "fastboot: error"

    async def test_failed_device_run_log_fetch_error(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        flash_cloud.list_device_runs.return_value = [DeviceRun(id=7, device_id=101, run_status=DeviceRunStatus.FAILED)]
        flash_cloud.get_device_run_log.side_effect = CloudApiError(404, "no log")

        assert await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 600) is False

    async def test_cancellation_aborts_run(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        flash_cloud.get_run.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 600)

        flash_cloud.abort_run.assert_awaited_once_with(3, 42)

    async def test_cancellation_before_polling_aborts_run(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        flash_cloud.start_run.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await provisioner.provision([model_filter], BUILD_URL, 0, "flash-fxos", 600)

        flash_cloud.abort_run.assert_awaited_once_with(3, 42)
        flash_cloud.get_run.assert_not_awaited()


class TestParameterReset:
    async def test_consecutive_flashes_leave_only_latest_parameters(
        self, provisioner: Provisioner, flash_cloud: AsyncMock, model_filter: DeviceFilter
    ) -> None:
        stored: dict[int, RunParameter] = {
            1: RunParameter(id=1, key="FLAME_ZIP_URL", value="old"),
            2: RunParameter(id=2, key="STALE", value="x"),
        }
        next_id = iter(range(100, 200))

        async def _list(project_id: int, run_id: int) -> list[RunParameter]:
            return list(stored.values())

        async def _delete(project_id: int, run_id: int, parameter_id: int) -> None:
            del stored[parameter_id]

        async def _create(project_id: int, run_id: int, key: str, value: str) -> RunParameter:
            parameter = RunParameter(id=next(next_id), key=key, value=value)
            stored[parameter.id] = parameter
            return parameter

        flash_cloud.list_run_parameters.side_effect = _list
        flash_cloud.delete_run_parameter.side_effect = _delete
        flash_cloud.create_run_parameter.side_effect = _create
        flash_cloud.get_run.side_effect = None
        flash_cloud.get_run.return_value = _run(RunState.FINISHED)

        await provisioner.provision([model_filter], "https://builds.test/first.zip", 256, "flash-fxos", 600)
        await provisioner.provision([model_filter], "https://builds.test/second.zip", 512, "flash-fxos", 600)

        assert {p.key: p.value for p in stored.values()} == {
            "FLAME_ZIP_URL": "https://builds.test/second.zip",
            "MEM_TOTAL": "512",
        }
        assert len(stored) == 2
