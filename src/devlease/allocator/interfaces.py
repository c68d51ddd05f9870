"""Protocol interfaces for allocator dependency injection."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from devlease.shared.enums import ProxyKind
from devlease.shared.models import Device, DeviceFilter, DeviceSession, ProvisioningJob, ProxyEndpoint


@runtime_checkable
class Locator(Protocol):
    """Protocol for finding a free device matching label filters."""

    async def locate(self, filters: Sequence[DeviceFilter], allow_locked_fallback: bool = False) -> Device | None:
        """Find a candidate device.

        Args:
            filters: Label predicates every candidate must satisfy
            allow_locked_fallback: Accept an online but locked device when no free one exists

        Returns:
            The selected device, or None when nothing matches

        Raises:
            CloudError: If the device cloud cannot be queried
        """
        ...


@runtime_checkable
class DeviceProvisioner(Protocol):
    """Protocol for flashing a build onto a pool device."""

    async def find_job(self, job_name: str) -> ProvisioningJob | None:
        """Look up the flash project by name.

        Returns:
            The project, or None if it does not exist
        """
        ...

    async def provision(
        self,
        filters: Sequence[DeviceFilter],
        build_url: str,
        mem_total: int,
        job_name: str,
        timeout: int,
    ) -> bool:
        """Flash ``build_url`` onto a device matching ``filters``.

        Args:
            filters: Label predicates for the flash target
            build_url: Location of the build image
            mem_total: Memory limit in MB (0 = unthrottled)
            job_name: Name of the flash project
            timeout: Maximum seconds to wait for the run to finish

        Returns:
            True if the run finished and the target device did not fail

        Raises:
            NoMatchingDeviceError: If no online device matches ``filters``
            CloudError: If the device cloud rejects a request
        """
        ...


@runtime_checkable
class SessionLocks(Protocol):
    """Protocol for exclusive device sessions."""

    async def acquire(self, device_id: int, running_timeout: int) -> DeviceSession | None:
        """Lock a device and wait until its session runs.

        Returns:
            The running session, or None when the device is taken or never started

        Raises:
            CloudError: For failures other than the lock conflict
        """
        ...

    async def release(self, session: DeviceSession) -> None:
        """Release a session, refreshing credentials once on failure.

        Raises:
            SessionReleaseError: If the retry fails as well
        """
        ...


@runtime_checkable
class ProxyLookup(Protocol):
    """Protocol for discovering proxy endpoints of a running session."""

    async def resolve(self, session_id: int, kind: ProxyKind, timeout: int) -> ProxyEndpoint:
        """Wait until the proxy for ``kind`` is published.

        Raises:
            ProxyDiscoveryError: On timeout or query failure
        """
        ...
