"""Tests for the device label snapshot."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

from devlease.allocator.labels import build_label_snapshot, write_device_data
from devlease.shared.exceptions import CloudTransportError
from devlease.shared.models import DeviceLabel
from devlease.shared.workspace import WorkspaceWriter

LABELS = [
    DeviceLabel(id=1, display_name="Flame", property_group_name="Model"),
    DeviceLabel(id=2, display_name="512_https://builds.test/b1.zip", property_group_name="Build Identifier"),
    DeviceLabel(id=3, display_name="wifi", property_group_name="Capabilities"),
    DeviceLabel(id=4, display_name="sim", property_group_name="Capabilities"),
    DeviceLabel(id=5, display_name="nfc", property_group_name="Capabilities"),
]


def test_build_label_snapshot() -> None:
    assert build_label_snapshot(LABELS) == {
        "model": "Flame",
        "build_identifier": "512_https://builds.test/b1.zip",
        "capabilities": ["wifi", "sim", "nfc"],
    }


class TestWriteDeviceData:
    async def test_writes_json(self, mock_cloud: AsyncMock, tmp_path: Path) -> None:
        mock_cloud.list_device_properties.return_value = LABELS

        path = await write_device_data(mock_cloud, WorkspaceWriter(tmp_path), 101, "device.json")

        assert path is not None
        assert json.loads(path.read_text())["model"] == "Flame"
        mock_cloud.list_device_properties.assert_awaited_once_with(101)

    async def test_no_labels_writes_nothing(self, mock_cloud: AsyncMock, tmp_path: Path) -> None:
        assert await write_device_data(mock_cloud, WorkspaceWriter(tmp_path), 101, "device.json") is None
        assert not (tmp_path / "device.json").exists()

    async def test_cloud_error_is_not_fatal(self, mock_cloud: AsyncMock, tmp_path: Path) -> None:
        mock_cloud.list_device_properties.side_effect = CloudTransportError("down")

        assert await write_device_data(mock_cloud, WorkspaceWriter(tmp_path), 101, "device.json") is None

    async def test_write_error_is_not_fatal(self, mock_cloud: AsyncMock, tmp_path: Path) -> None:
        mock_cloud.list_device_properties.return_value = LABELS

        assert await write_device_data(mock_cloud, WorkspaceWriter(tmp_path), 101, "../device.json") is None
