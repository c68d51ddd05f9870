"""Shared pytest fixtures for the devlease test suite."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from devlease.config import Settings
from devlease.shared.enums import SessionState
from devlease.shared.models import Device, DeviceFilter, DeviceLabel, DeviceSession, LabelGroup


@pytest.fixture()
def settings() -> Settings:
    """Return a Settings instance with test defaults."""
    return Settings(
        cloud_url="https://cloud.test",
        cloud_username="ci@example.com",
        cloud_password="secret",
        build_url="https://builds.test/b1.zip",
        mem_total="512",
        device_filters="Model|Flame",
        flash_poll_interval_seconds=0,
        session_poll_interval_seconds=0,
        proxy_poll_interval_seconds=0,
    )


@pytest.fixture()
def model_filter() -> DeviceFilter:
    return DeviceFilter(group_name="Model", label_value="Flame")


@pytest.fixture()
def free_device() -> Device:
    return Device(id=101, display_name="flame-101", online=True, locked=False)


@pytest.fixture()
def locked_device() -> Device:
    return Device(id=102, display_name="flame-102", online=True, locked=True)


@pytest.fixture()
def running_session() -> DeviceSession:
    return DeviceSession(id=7001, state=SessionState.RUNNING, device_id=101)


@pytest.fixture()
def waiting_session() -> DeviceSession:
    return DeviceSession(id=7001, state=SessionState.WAITING, device_id=101)


@pytest.fixture()
def mock_cloud() -> AsyncMock:
    """Mock device cloud with a single "Model: Flame" label."""
    mock = AsyncMock()
    mock.search_label_groups.return_value = [LabelGroup(id=1, name="Model", display_name="Model")]
    mock.search_labels.return_value = [DeviceLabel(id=11, display_name="Flame", property_group_name="Model")]
    mock.list_devices.return_value = []
    mock.list_device_properties.return_value = []
    mock.release_device_session.return_value = None
    mock.aclose.return_value = None
    return mock
