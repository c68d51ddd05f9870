"""Frozen Pydantic domain models shared by all modules."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from devlease.shared.enums import DeviceRunStatus, ProxyKind, RunState, SessionState

# Device cloud payloads are camelCase; models accept either spelling.
_API_CONFIG = {"frozen": True, "populate_by_name": True, "alias_generator": to_camel}


class DeviceFilter(BaseModel):
    """A (label group, label value) predicate used to search the device pool."""

    model_config = {"frozen": True}

    group_name: str
    label_value: str


class Identity(BaseModel):
    """The authenticated device cloud user."""

    model_config = _API_CONFIG

    id: int
    email: str = ""


class Device(BaseModel):
    """Point-in-time snapshot of a pool device; stale as soon as it is fetched."""

    model_config = _API_CONFIG

    id: int
    display_name: str = ""
    online: bool = False
    locked: bool = False


class LabelGroup(BaseModel):
    model_config = _API_CONFIG

    id: int
    name: str = ""
    display_name: str = ""


class DeviceLabel(BaseModel):
    """A label value (device property) inside a label group."""

    model_config = _API_CONFIG

    id: int
    display_name: str
    property_group_name: str = ""


class ProvisioningJob(BaseModel):
    """A flash project: the cloud job that reinstalls a build on a device."""

    model_config = _API_CONFIG

    id: int
    name: str


class RunParameter(BaseModel):
    model_config = _API_CONFIG

    id: int
    key: str
    value: str = ""


class ProvisioningRun(BaseModel):
    """A single execution of a flash project."""

    model_config = _API_CONFIG

    id: int
    project_id: int
    state: RunState = RunState.CREATED


class DeviceRun(BaseModel):
    """Outcome of a provisioning run on one device."""

    model_config = _API_CONFIG

    id: int
    device_id: int
    run_status: DeviceRunStatus = DeviceRunStatus.UNKNOWN


class DeviceSession(BaseModel):
    """Exclusive lock on a device."""

    model_config = _API_CONFIG

    id: int
    state: SessionState = SessionState.WAITING
    device_id: int | None = None


class ProxyEndpoint(BaseModel):
    """A dynamically assigned port bridging one protocol to a session's device."""

    model_config = {"frozen": True}

    kind: ProxyKind
    port: int
    host: str
    session_id: int
    serial_id: str | None = None


class AllocationRequest(BaseModel):
    """What the caller wants leased: a device flashed with ``build_url``."""

    model_config = {"frozen": True}

    build_url: str = Field(min_length=1)
    mem_total: int = Field(default=0, ge=0)
    filters: tuple[DeviceFilter, ...] = ()

    @property
    def build_identifier(self) -> str:
        return f"{self.mem_total}_{self.build_url}"


class SessionDescriptor(BaseModel):
    """Everything a build step needs to talk to the leased device."""

    model_config = {"frozen": True}

    session_id: int
    device_id: int
    adb_host: str
    adb_port: int
    android_serial: str
    marionette_host: str
    marionette_port: int
    device_data: str = "device.json"

    def to_env(self) -> dict[str, str]:
        """Render the descriptor as build environment variables."""
        return {
            "SESSION_ID": str(self.session_id),
            "ADB_PORT": str(self.adb_port),
            "ADB_HOST": self.adb_host,
            "DEVICE_DATA": self.device_data,
            "ANDROID_SERIAL": self.android_serial,
            "MARIONETTE_PORT": str(self.marionette_port),
            "MARIONETTE_HOST": self.marionette_host,
        }
