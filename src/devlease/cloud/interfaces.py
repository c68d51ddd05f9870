"""Protocol interface for the device cloud API capability."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from devlease.shared.enums import ProxyKind
from devlease.shared.models import (
    Device,
    DeviceLabel,
    DeviceRun,
    DeviceSession,
    Identity,
    LabelGroup,
    ProvisioningJob,
    ProvisioningRun,
    RunParameter,
)


@runtime_checkable
class DeviceCloud(Protocol):
    """Operations the allocator needs from the remote device cloud.

    Every method raises ``CloudError`` (or a subclass) when the call fails.
    """

    async def authenticate(self) -> Identity: ...

    async def search_label_groups(self, search: str) -> list[LabelGroup]: ...

    async def search_labels(self, group_id: int, search: str) -> list[DeviceLabel]: ...

    async def list_devices(self, label_ids: Sequence[int] = ()) -> list[Device]:
        """List pool devices carrying every label in ``label_ids`` (all devices if empty)."""
        ...

    async def list_device_properties(self, device_id: int) -> list[DeviceLabel]: ...

    async def search_projects(self, search: str) -> list[ProvisioningJob]: ...

    async def create_run(self, project_id: int) -> ProvisioningRun: ...

    async def get_run(self, project_id: int, run_id: int) -> ProvisioningRun: ...

    async def list_run_parameters(self, project_id: int, run_id: int) -> list[RunParameter]: ...

    async def delete_run_parameter(self, project_id: int, run_id: int, parameter_id: int) -> None: ...

    async def create_run_parameter(self, project_id: int, run_id: int, key: str, value: str) -> RunParameter: ...

    async def start_run(self, run_id: int, device_ids: Sequence[int]) -> ProvisioningRun: ...

    async def abort_run(self, project_id: int, run_id: int) -> None: ...

    async def list_device_runs(self, project_id: int, run_id: int) -> list[DeviceRun]: ...

    async def get_device_run_log(self, project_id: int, run_id: int, device_run_id: int) -> str: ...

    async def create_device_session(self, device_id: int) -> DeviceSession:
        """Request an exclusive session.

        Raises:
            CloudApiError: With the cloud's conflict status when the device is already locked.
        """
        ...

    async def get_device_session(self, session_id: int) -> DeviceSession: ...

    async def release_device_session(self, session_id: int) -> None: ...

    async def query_proxies(self, kind: ProxyKind, session_id: int) -> list[dict[str, Any]]:
        """Return published proxy entries for ``(kind, session_id)``; empty until provisioned."""
        ...

    async def aclose(self) -> None: ...
