"""Exclusive device sessions: acquire, wait for RUNNING, release."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from devlease.cloud.interfaces import DeviceCloud
from devlease.shared.enums import SessionState
from devlease.shared.exceptions import CloudApiError, CloudError, SessionReleaseError
from devlease.shared.models import DeviceSession

logger = logging.getLogger(__name__)


class SessionManager:
    """Lock devices through the device cloud's session API.

    Implements the ``SessionLocks`` protocol. The cloud enforces one live
    session per device and answers ``conflict_status`` when the device is
    already taken; that answer is a normal "no" here, not an error.
    """

    def __init__(
        self,
        cloud: DeviceCloud,
        *,
        client_factory: Callable[[], DeviceCloud] | None = None,
        poll_interval: int = 5,
        conflict_status: int = 400,
    ) -> None:
        self._cloud = cloud
        self._client_factory = client_factory
        self._poll_interval = poll_interval
        self._conflict_status = conflict_status

    async def acquire(self, device_id: int, running_timeout: int) -> DeviceSession | None:
        try:
            session = await self._cloud.create_device_session(device_id)
        except CloudApiError as exc:
            if exc.status == self._conflict_status:
                logger.info("device %d is not available: %s", device_id, exc.message)
                return None
            logger.error("failed to start device session on device %d: %s", device_id, exc)
            raise

        logger.info("requested session %d on device %d (state=%s)", session.id, device_id, session.state.value)
        try:
            session = await self._wait_running(session, running_timeout)
        except asyncio.CancelledError:
            logger.warning("interrupted while waiting for session %d, releasing it", session.id)
            await self._release_quietly(session)
            raise

        if session.state == SessionState.RUNNING:
            logger.info("session %d is running on device %d", session.id, device_id)
            return session

        if session.state == SessionState.WAITING:
            logger.info("timeout when waiting for device session %d after %ds", session.id, running_timeout)
            await self.release(session)
        else:
            logger.warning("device session %d ended in state %s", session.id, session.state.value)
            await self._release_quietly(session)
        return None

    async def _wait_running(self, session: DeviceSession, timeout: int) -> DeviceSession:
        """Poll while the session is WAITING; a session still WAITING at ``timeout`` counts as failed."""
        elapsed = 0
        while session.state == SessionState.WAITING and elapsed < timeout:
            await asyncio.sleep(self._poll_interval)
            elapsed += self._poll_interval
            try:
                session = await self._cloud.get_device_session(session.id)
            except CloudError as exc:
                logger.warning("could not refresh device session %d: %s", session.id, exc)
        return session

    async def release(self, session: DeviceSession) -> None:
        logger.info("releasing device session %d", session.id)
        try:
            await self._cloud.release_device_session(session.id)
            logger.info("released device session %d", session.id)
            return
        except CloudError as exc:
            if self._client_factory is None:
                raise SessionReleaseError(f"failed to release device session {session.id}: {exc}") from exc
            logger.warning("failed to release device session %d (%s), retrying with a new client", session.id, exc)

        # Auth and refresh tokens may have expired since the session started.
        stale = self._cloud
        self._cloud = self._client_factory()
        await stale.aclose()
        try:
            await self._cloud.release_device_session(session.id)
        except CloudError as exc:
            logger.error("failed to release device session %d: %s", session.id, exc)
            raise SessionReleaseError(f"failed to release device session {session.id}: {exc}") from exc
        logger.info("released device session %d", session.id)

    async def _release_quietly(self, session: DeviceSession) -> None:
        try:
            await self.release(session)
        except SessionReleaseError as exc:
            logger.error("%s", exc)
