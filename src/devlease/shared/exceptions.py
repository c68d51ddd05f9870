"""Hierarchical exception types for the device allocator."""

from __future__ import annotations


class DevLeaseError(Exception):
    """Base exception for all devlease errors."""


# ── Configuration ──────────────────────────────────────────────


class ConfigurationError(DevLeaseError):
    """Invalid or incomplete allocator configuration."""


class ProvisioningJobNotFoundError(ConfigurationError):
    """The named flash project does not exist in the device cloud."""


class NoMatchingDeviceError(ConfigurationError):
    """No online device matches the configured filters."""


# ── Device cloud ───────────────────────────────────────────────


class CloudError(DevLeaseError):
    """Failed to communicate with the device cloud API."""


class CloudAuthError(CloudError):
    """Authentication against the device cloud failed."""


class CloudTransportError(CloudError):
    """Network-level failure talking to the device cloud."""


class CloudDecodeError(CloudError):
    """The device cloud returned a payload that does not match the expected record."""


class CloudApiError(CloudError):
    """The device cloud answered with a non-success status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"device cloud returned {status}: {message}")
        self.status = status
        self.message = message


# ── Allocation ─────────────────────────────────────────────────


class AllocationError(DevLeaseError):
    """Allocating a device lease failed."""


class FlashingFailedError(AllocationError):
    """No matching device appeared after flashing within the retry budget."""


class SessionAcquisitionError(AllocationError):
    """A located device could not be locked within the retry budget."""


class ProxyDiscoveryError(AllocationError):
    """Proxy endpoint for a session was not published in time."""


class SessionReleaseError(AllocationError):
    """Releasing a device session failed even after refreshing the client."""


class RetryExhaustedError(DevLeaseError):
    """A bounded retry ran out of attempts."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


# ── Workspace ──────────────────────────────────────────────────


class WorkspaceError(DevLeaseError):
    """Writing into the build workspace failed."""
