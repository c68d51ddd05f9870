"""Proxy endpoint discovery for a running device session."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from devlease.cloud.interfaces import DeviceCloud
from devlease.shared.enums import ProxyKind
from devlease.shared.exceptions import CloudError, ProxyDiscoveryError
from devlease.shared.models import ProxyEndpoint

logger = logging.getLogger(__name__)


class ProxyResolver:
    """Poll the proxy plugin until a session's endpoint for one protocol appears.

    Implements the ``ProxyLookup`` protocol.
    """

    def __init__(self, cloud: DeviceCloud, *, host: str, poll_interval: int = 10) -> None:
        self._cloud = cloud
        self._host = host
        self._poll_interval = poll_interval

    async def resolve(self, session_id: int, kind: ProxyKind, timeout: int) -> ProxyEndpoint:
        """Return the first published proxy entry for ``(kind, session_id)``.

        An empty answer means the proxy is not provisioned yet.

        Raises:
            ProxyDiscoveryError: If nothing appears within ``timeout`` seconds or the query fails.
        """
        elapsed = 0
        while True:
            try:
                entries = await self._cloud.query_proxies(kind, session_id)
            except CloudError as exc:
                raise ProxyDiscoveryError(f"{kind.value} proxy query for session {session_id} failed: {exc}") from exc

            logger.debug("%s proxy entries for session %d: %s", kind.value, session_id, entries)
            if entries:
                endpoint = self._to_endpoint(entries[0], kind=kind, session_id=session_id)
                logger.info("%s proxy for session %d at %s:%d", kind.value, session_id, endpoint.host, endpoint.port)
                return endpoint

            if elapsed >= timeout:
                raise ProxyDiscoveryError(f"{kind.value} proxy for session {session_id} not available after {timeout}s")
            await asyncio.sleep(self._poll_interval)
            elapsed += self._poll_interval

    def _to_endpoint(self, entry: dict[str, Any], *, kind: ProxyKind, session_id: int) -> ProxyEndpoint:
        serial = entry.get("serialId")
        try:
            return ProxyEndpoint(
                kind=kind,
                port=entry.get("port"),  # type: ignore[arg-type]
                host=entry.get("host") or self._host,
                session_id=session_id,
                serial_id=str(serial) if serial is not None else None,
            )
        except ValidationError as exc:
            raise ProxyDiscoveryError(f"malformed {kind.value} proxy entry for session {session_id}: {entry}") from exc
