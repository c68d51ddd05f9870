"""Device selection against the shared pool."""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from devlease.cloud.interfaces import DeviceCloud
from devlease.shared.models import Device, DeviceFilter, DeviceLabel, LabelGroup

logger = logging.getLogger(__name__)


class DeviceLocator:
    """Resolve label filters to a device that is online and, ideally, unlocked.

    Implements the ``Locator`` protocol. Read-only against the pool: the
    returned ``Device`` is a snapshot and may be locked by someone else by the
    time a session is requested.
    """

    def __init__(self, cloud: DeviceCloud, *, rng: random.Random | None = None) -> None:
        self._cloud = cloud
        self._rng = rng or random.Random()

    async def locate(self, filters: Sequence[DeviceFilter], allow_locked_fallback: bool = False) -> Device | None:
        label_ids: list[int] = []
        for device_filter in filters:
            label = await self._resolve_label(device_filter)
            if label is None:
                return None
            label_ids.append(label.id)

        if label_ids:
            logger.info("looking for devices with labels %s", label_ids)
        devices = await self._cloud.list_devices(label_ids)
        logger.info("found %d device(s)", len(devices))
        if not devices:
            return None

        # Shuffle so concurrent allocators do not all pile onto the same device.
        candidates = list(devices)
        self._rng.shuffle(candidates)
        return _select(candidates, allow_locked_fallback=allow_locked_fallback)

    async def _resolve_label(self, device_filter: DeviceFilter) -> DeviceLabel | None:
        logger.info("looking for label %s: %s", device_filter.group_name, device_filter.label_value)

        groups = await self._cloud.search_label_groups(device_filter.group_name)
        group = _pick_group(groups, device_filter.group_name)
        if group is None:
            logger.warning("unable to find label group: %s", device_filter.group_name)
            return None

        labels = await self._cloud.search_labels(group.id, device_filter.label_value)
        for label in labels:
            if label.display_name == device_filter.label_value:
                logger.info("resolved %s: %s to label %d", group.name, label.display_name, label.id)
                return label

        logger.warning("unable to find label: %s", device_filter.label_value)
        return None


def _pick_group(groups: Sequence[LabelGroup], name: str) -> LabelGroup | None:
    """Prefer an exact name match among substring search results."""
    for group in groups:
        if name in (group.name, group.display_name):
            return group
    return groups[0] if groups else None


def _select(devices: Sequence[Device], *, allow_locked_fallback: bool) -> Device | None:
    locked: Device | None = None
    for device in devices:
        if not device.online:
            continue
        if not device.locked:
            logger.info("selected device %s (id=%d)", device.display_name, device.id)
            return device
        if locked is None:
            locked = device

    if allow_locked_fallback and locked is not None:
        logger.info("no free device, falling back to locked device %s (id=%d)", locked.display_name, locked.id)
        return locked

    logger.info("unable to find a free device with the requested labels")
    return None
