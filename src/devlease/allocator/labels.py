"""Device label snapshot written next to the build (``device.json``)."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path

from devlease.cloud.interfaces import DeviceCloud
from devlease.shared.exceptions import CloudError, WorkspaceError
from devlease.shared.models import DeviceLabel
from devlease.shared.workspace import WorkspaceWriter

logger = logging.getLogger(__name__)


def build_label_snapshot(labels: Sequence[DeviceLabel]) -> dict[str, str | list[str]]:
    """Group labels by normalised group name.

    A group with a single label maps to a string; further labels in the same
    group turn the value into a list.
    """
    snapshot: dict[str, str | list[str]] = {}
    for label in labels:
        key = label.property_group_name.lower().replace(" ", "_")
        current = snapshot.get(key)
        if current is None:
            snapshot[key] = label.display_name
        elif isinstance(current, list):
            current.append(label.display_name)
        else:
            snapshot[key] = [current, label.display_name]
    return snapshot


async def write_device_data(
    cloud: DeviceCloud,
    workspace: WorkspaceWriter,
    device_id: int,
    filename: str,
) -> Path | None:
    """Fetch the device's labels and persist them as JSON.

    Failures are logged and swallowed: the snapshot is informational only.
    """
    try:
        labels = await cloud.list_device_properties(device_id)
    except CloudError as exc:
        logger.error("could not read labels for device %d: %s", device_id, exc)
        return None

    if not labels:
        logger.info("no device labels have been set for device %d", device_id)
        return None

    snapshot = build_label_snapshot(labels)
    try:
        path = await workspace.write(filename, json.dumps(snapshot, indent=2))
    except WorkspaceError as exc:
        logger.error("could not write device data: %s", exc)
        return None

    logger.info("device data: %s", json.dumps(snapshot))
    return path
