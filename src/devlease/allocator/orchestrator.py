"""Top-level allocation state machine: locate -> flash -> lock -> proxies -> release."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from devlease.allocator.interfaces import DeviceProvisioner, Locator, ProxyLookup, SessionLocks
from devlease.allocator.labels import write_device_data
from devlease.cloud.interfaces import DeviceCloud
from devlease.shared.enums import AllocationState, ProxyKind
from devlease.shared.exceptions import (
    AllocationError,
    DevLeaseError,
    FlashingFailedError,
    ProvisioningJobNotFoundError,
    RetryExhaustedError,
    SessionAcquisitionError,
)
from devlease.shared.models import AllocationRequest, Device, DeviceFilter, DeviceSession, SessionDescriptor
from devlease.shared.retry import retry_bounded
from devlease.shared.workspace import WorkspaceWriter

logger = logging.getLogger(__name__)


class _AttemptFailed(DevLeaseError):
    """One locate/flash/lock cycle did not produce a session; retryable."""


class _NoDeviceAfterFlash(_AttemptFailed):
    pass


class _SessionNotStarted(_AttemptFailed):
    pass


@dataclass(frozen=True, slots=True)
class Allocation:
    """A leased device plus the handle that gives it back."""

    descriptor: SessionDescriptor
    teardown: Callable[[], Awaitable[None]]


class Orchestrator:
    """Sequence locator, provisioner, session manager and proxy resolver for one allocation.

    One instance serves exactly one allocation; ``teardown`` is idempotent and
    never raises.
    """

    def __init__(
        self,
        *,
        cloud: DeviceCloud,
        locator: Locator,
        provisioner: DeviceProvisioner,
        sessions: SessionLocks,
        proxies: ProxyLookup,
        workspace: WorkspaceWriter | None = None,
        build_identifier_group: str = "Build Identifier",
        flash_job_name: str = "flash-fxos",
        max_attempts: int = 4,
        flash_timeout_seconds: int = 600,
        session_timeout_seconds: int = 60,
        proxy_timeout_seconds: int = 300,
        device_data_filename: str = "device.json",
    ) -> None:
        self._cloud = cloud
        self._locator = locator
        self._provisioner = provisioner
        self._sessions = sessions
        self._proxies = proxies
        self._workspace = workspace
        self._build_identifier_group = build_identifier_group
        self._flash_job_name = flash_job_name
        self._max_attempts = max_attempts
        self._flash_timeout = flash_timeout_seconds
        self._session_timeout = session_timeout_seconds
        self._proxy_timeout = proxy_timeout_seconds
        self._device_data_filename = device_data_filename
        self._state = AllocationState.IDLE
        self._session: DeviceSession | None = None
        self._job_verified = False

    @property
    def state(self) -> AllocationState:
        return self._state

    def _transition(self, state: AllocationState) -> None:
        if state != self._state:
            logger.info("allocation %s -> %s", self._state.value, state.value)
        self._state = state

    async def allocate(self, request: AllocationRequest) -> Allocation:
        """Lease a device running ``request.build_url``.

        Raises:
            FlashingFailedError: No matching device appeared within the retry budget.
            SessionAcquisitionError: Matching devices kept refusing the lock.
            NoMatchingDeviceError: The caller's filters match no online device at all.
            ProvisioningJobNotFoundError: The flash project does not exist.
            ProxyDiscoveryError: ADB or Marionette proxy never appeared (session released).
        """
        if self._state != AllocationState.IDLE:
            raise AllocationError(f"orchestrator already used (state={self._state.value})")

        identity_filter = DeviceFilter(group_name=self._build_identifier_group, label_value=request.build_identifier)
        search_filters = (*request.filters, identity_filter)

        async def _attempt(attempt: int) -> tuple[Device, DeviceSession]:
            return await self._attempt(attempt, request, search_filters)

        try:
            device, session = await retry_bounded(
                _attempt,
                max_attempts=self._max_attempts,
                is_retryable=lambda exc: isinstance(exc, _AttemptFailed),
                label="allocation",
            )
        except RetryExhaustedError as exc:
            self._transition(AllocationState.FAILED)
            if isinstance(exc.last_error, _SessionNotStarted):
                logger.error("failed to find device: session is null after %d attempt(s)", exc.attempts)
                raise SessionAcquisitionError(
                    f"device session is null after {exc.attempts} attempt(s) for {request.build_identifier}"
                ) from exc
            logger.error("flashing device failed, tried %d times but no device found", exc.attempts)
            raise FlashingFailedError(
                f"flashing failed after {exc.attempts} attempt(s), no device carries {request.build_identifier}"
            ) from exc
        except BaseException:
            self._transition(AllocationState.FAILED)
            raise

        self._session = session
        logger.info("started session %d on device %d", session.id, device.id)

        try:
            if self._workspace is not None:
                await write_device_data(self._cloud, self._workspace, device.id, self._device_data_filename)

            self._transition(AllocationState.RESOLVING_PROXIES)
            adb = await self._proxies.resolve(session.id, ProxyKind.ADB, self._proxy_timeout)
            logger.info("ADB port: %d, ADB host: %s, Android serial: %s", adb.port, adb.host, adb.serial_id)
            marionette = await self._proxies.resolve(session.id, ProxyKind.MARIONETTE, self._proxy_timeout)
            logger.info("Marionette port: %d, Marionette host: %s", marionette.port, marionette.host)
        except BaseException as exc:
            logger.error("failed to fetch proxy entries: %r", exc)
            await self._release_after_failure(session)
            raise

        descriptor = SessionDescriptor(
            session_id=session.id,
            device_id=device.id,
            adb_host=adb.host,
            adb_port=adb.port,
            android_serial=adb.serial_id or "",
            marionette_host=marionette.host,
            marionette_port=marionette.port,
            device_data=self._device_data_filename,
        )
        self._transition(AllocationState.READY)
        return Allocation(descriptor=descriptor, teardown=self.teardown)

    async def _attempt(
        self,
        attempt: int,
        request: AllocationRequest,
        search_filters: tuple[DeviceFilter, ...],
    ) -> tuple[Device, DeviceSession]:
        self._transition(AllocationState.LOCATING)
        device = await self._locator.locate(search_filters)
        if device is None:
            logger.info("no free device with build %s (attempt %d), flashing", request.build_identifier, attempt)
            self._transition(AllocationState.FLASHING)
            await self._verify_flash_job()
            flashed = await self._provisioner.provision(
                request.filters,
                request.build_url,
                request.mem_total,
                self._flash_job_name,
                self._flash_timeout,
            )
            if not flashed:
                logger.warning("flash attempt %d did not succeed", attempt)

            self._transition(AllocationState.LOCATING)
            device = await self._locator.locate(search_filters)
            if device is None:
                raise _NoDeviceAfterFlash(f"no free device carried {request.build_identifier}")

        logger.info("requesting session for device %s (id=%d)", device.display_name, device.id)
        self._transition(AllocationState.SESSION_PENDING)
        session = await self._sessions.acquire(device.id, self._session_timeout)
        if session is None:
            raise _SessionNotStarted(f"device {device.id} could not be locked")
        return device, session

    async def _verify_flash_job(self) -> None:
        if self._job_verified:
            return
        if await self._provisioner.find_job(self._flash_job_name) is None:
            raise ProvisioningJobNotFoundError(f"unable to find flash project: {self._flash_job_name}")
        self._job_verified = True

    async def _release_after_failure(self, session: DeviceSession) -> None:
        self._session = None
        try:
            await self._sessions.release(session)
        except Exception as exc:
            logger.error("failed to release device session %d: %s", session.id, exc)
        finally:
            self._transition(AllocationState.FAILED)

    async def teardown(self) -> None:
        """Release the leased session; a no-op when nothing is held."""
        session = self._session
        if session is None:
            logger.warning("session was not initialized, skipping session release")
            return

        self._session = None
        self._transition(AllocationState.TEARDOWN)
        try:
            await self._sessions.release(session)
        except Exception as exc:
            logger.error("failed to release device session %d: %s", session.id, exc)
        finally:
            self._transition(AllocationState.RELEASED)

    @asynccontextmanager
    async def lease(self, request: AllocationRequest) -> AsyncIterator[SessionDescriptor]:
        """Allocate for the body of an ``async with`` block, then always tear down."""
        allocation = await self.allocate(request)
        try:
            yield allocation.descriptor
        finally:
            await allocation.teardown()
