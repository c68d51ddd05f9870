"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique


@unique
class RunState(str, Enum):
    """Lifecycle states of a provisioning (flash) run."""

    CREATED = "CREATED"
    WAITING = "WAITING"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    ABORTED = "ABORTED"


@unique
class DeviceRunStatus(str, Enum):
    """Per-device outcome inside a provisioning run."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    WARNING = "WARNING"
    EXCLUDED = "EXCLUDED"
    SKIPPED = "SKIPPED"
    ABORTED = "ABORTED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def _missing_(cls, value: object) -> DeviceRunStatus:
        return cls.UNKNOWN


@unique
class SessionState(str, Enum):
    """States of an exclusive device session."""

    WAITING = "WAITING"
    RUNNING = "RUNNING"
    ABORTED = "ABORTED"
    TIMEOUT = "TIMEOUT"
    FAILED = "FAILED"
    SUCCEEDED = "SUCCEEDED"
    EXCLUDED = "EXCLUDED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def _missing_(cls, value: object) -> SessionState:
        return cls.UNKNOWN


@unique
class ProxyKind(str, Enum):
    """Protocols bridged by the proxy plugin."""

    ADB = "adb"
    MARIONETTE = "marionette"


@unique
class AllocationState(str, Enum):
    """Orchestrator state machine."""

    IDLE = "idle"
    LOCATING = "locating"
    FLASHING = "flashing"
    SESSION_PENDING = "session_pending"
    RESOLVING_PROXIES = "resolving_proxies"
    READY = "ready"
    TEARDOWN = "teardown"
    RELEASED = "released"
    FAILED = "failed"
