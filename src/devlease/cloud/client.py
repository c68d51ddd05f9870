"""Testdroid-compatible device cloud client via the REST API."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from devlease.shared.enums import ProxyKind
from devlease.shared.exceptions import CloudApiError, CloudAuthError, CloudDecodeError, CloudTransportError
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
from devlease.shared.urls import remove_bewit

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class TestdroidClient:
    """Device cloud client using OAuth2 password grant + bearer tokens.

    Implements the ``DeviceCloud`` protocol. The access token is cached on the
    instance; a 401 triggers one token refresh before the request is retried.
    Build a fresh instance to discard all cached credentials.
    """

    __test__ = False  # not a pytest test class despite the name

    def __init__(
        self,
        cloud_url: str,
        username: str,
        password: str,
        *,
        api_prefix: str = "/api/v2",
        client_id: str = "testdroid-cloud-api",
        timeout: int = 30,
        proxy: str | None = None,
    ) -> None:
        self._cloud_url = cloud_url.rstrip("/")
        self._api_url = f"{self._cloud_url}{api_prefix}"
        self._username = username
        self._password = password
        self._client_id = client_id
        self._timeout = timeout
        self._proxy = proxy or None
        self._token: str | None = None

    # ── transport ──────────────────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, proxy=self._proxy)

    async def _login(self, client: httpx.AsyncClient) -> None:
        """Exchange username/password for an access token."""
        resp = await client.post(
            f"{self._cloud_url}/oauth/token",
            data={
                "client_id": self._client_id,
                "grant_type": "password",
                "username": self._username,
                "password": self._password,
            },
        )
        if resp.status_code != 200:
            raise CloudAuthError(f"device cloud login failed ({resp.status_code}): {resp.text[:200]}")
        try:
            token = resp.json().get("access_token")
        except ValueError as exc:
            raise CloudAuthError("device cloud login returned a non-JSON body") from exc
        if not token:
            raise CloudAuthError("device cloud login returned no access_token")
        self._token = token
        logger.info("device cloud login successful as %s", self._username)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{self._api_url}{path}"
        try:
            async with self._http() as client:
                if self._token is None:
                    await self._login(client)
                resp = await client.request(method, url, params=params, data=data, headers=self._headers())
                if resp.status_code == 401:
                    logger.info("access token rejected, logging in again")
                    await self._login(client)
                    resp = await client.request(method, url, params=params, data=data, headers=self._headers())
        except httpx.HTTPError as exc:
            raise CloudTransportError(f"{method} {remove_bewit(url)} failed: {exc!r}") from exc

        if resp.status_code >= 400:
            raise CloudApiError(resp.status_code, resp.text[:200])
        logger.debug("%s %s -> %d", method, remove_bewit(str(resp.request.url)), resp.status_code)
        return resp

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}

    # ── decoding ───────────────────────────────────────────────

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise CloudDecodeError(f"expected JSON from {resp.request.url.path}: {resp.text[:200]}") from exc

    @staticmethod
    def _decode(model: type[ModelT], payload: Any) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise CloudDecodeError(f"invalid {model.__name__} payload: {exc}") from exc

    @classmethod
    def _decode_list(cls, model: type[ModelT], payload: Any) -> list[ModelT]:
        """Decode an ``{"data": [...], "total": n}`` list envelope."""
        if isinstance(payload, dict):
            items = payload.get("data", [])
        else:
            items = payload
        if not isinstance(items, list):
            raise CloudDecodeError(f"expected a list of {model.__name__}, got {type(items).__name__}")
        return [cls._decode(model, item) for item in items]

    async def _get_list(self, model: type[ModelT], path: str, params: Any = None) -> list[ModelT]:
        resp = await self._request("GET", path, params=params)
        return self._decode_list(model, self._json(resp))

    # ── identity ───────────────────────────────────────────────

    async def authenticate(self) -> Identity:
        """Log in and return the authenticated user.

        Raises:
            CloudAuthError: If the credentials are rejected.
        """
        self._token = None
        resp = await self._request("GET", "/me")
        identity = self._decode(Identity, self._json(resp))
        logger.info("authenticated as user %d (%s)", identity.id, identity.email)
        return identity

    # ── labels + devices ───────────────────────────────────────

    async def search_label_groups(self, search: str) -> list[LabelGroup]:
        return await self._get_list(LabelGroup, "/label-groups", params={"search": search})

    async def search_labels(self, group_id: int, search: str) -> list[DeviceLabel]:
        return await self._get_list(DeviceLabel, f"/label-groups/{group_id}/labels", params={"search": search})

    async def list_devices(self, label_ids: Sequence[int] = ()) -> list[Device]:
        params: list[tuple[str, str | int]] = [("limit", 0)]
        params.extend(("label_id[]", label_id) for label_id in label_ids)
        return await self._get_list(Device, "/devices", params=params)

    async def list_device_properties(self, device_id: int) -> list[DeviceLabel]:
        return await self._get_list(DeviceLabel, f"/devices/{device_id}/properties", params={"limit": 0})

    # ── flash projects + runs ──────────────────────────────────

    async def search_projects(self, search: str) -> list[ProvisioningJob]:
        return await self._get_list(ProvisioningJob, "/me/projects", params={"search": search})

    async def create_run(self, project_id: int) -> ProvisioningRun:
        resp = await self._request("POST", "/runs", data={"projectId": str(project_id)})
        return self._decode(ProvisioningRun, self._json(resp))

    async def get_run(self, project_id: int, run_id: int) -> ProvisioningRun:
        resp = await self._request("GET", f"/me/projects/{project_id}/runs/{run_id}")
        return self._decode(ProvisioningRun, self._json(resp))

    async def list_run_parameters(self, project_id: int, run_id: int) -> list[RunParameter]:
        return await self._get_list(
            RunParameter,
            f"/me/projects/{project_id}/runs/{run_id}/config/parameters",
            params={"limit": 0},
        )

    async def delete_run_parameter(self, project_id: int, run_id: int, parameter_id: int) -> None:
        await self._request("DELETE", f"/me/projects/{project_id}/runs/{run_id}/config/parameters/{parameter_id}")

    async def create_run_parameter(self, project_id: int, run_id: int, key: str, value: str) -> RunParameter:
        resp = await self._request(
            "POST",
            f"/me/projects/{project_id}/runs/{run_id}/config/parameters",
            data={"key": key, "value": value},
        )
        return self._decode(RunParameter, self._json(resp))

    async def start_run(self, run_id: int, device_ids: Sequence[int]) -> ProvisioningRun:
        resp = await self._request(
            "POST",
            f"/runs/{run_id}/start",
            data={"usedDeviceIds[]": [str(device_id) for device_id in device_ids]},
        )
        return self._decode(ProvisioningRun, self._json(resp))

    async def abort_run(self, project_id: int, run_id: int) -> None:
        await self._request("POST", f"/me/projects/{project_id}/runs/{run_id}/abort")

    async def list_device_runs(self, project_id: int, run_id: int) -> list[DeviceRun]:
        return await self._get_list(
            DeviceRun,
            f"/me/projects/{project_id}/runs/{run_id}/device-runs",
            params={"limit": 0},
        )

    async def get_device_run_log(self, project_id: int, run_id: int, device_run_id: int) -> str:
        resp = await self._request("GET", f"/me/projects/{project_id}/runs/{run_id}/device-runs/{device_run_id}/logs")
        return resp.text

    # ── device sessions ────────────────────────────────────────

    async def create_device_session(self, device_id: int) -> DeviceSession:
        resp = await self._request("POST", "/me/device-sessions", data={"deviceModelId": str(device_id)})
        return self._decode(DeviceSession, self._json(resp))

    async def get_device_session(self, session_id: int) -> DeviceSession:
        resp = await self._request("GET", f"/me/device-sessions/{session_id}")
        return self._decode(DeviceSession, self._json(resp))

    async def release_device_session(self, session_id: int) -> None:
        await self._request("POST", f"/me/device-sessions/{session_id}/release")

    # ── proxy plugin ───────────────────────────────────────────

    async def query_proxies(self, kind: ProxyKind, session_id: int) -> list[dict[str, Any]]:
        where = json.dumps({"type": kind.value, "sessionId": session_id})
        resp = await self._request("GET", "/proxy-plugin/proxies", params={"where": where})
        entries = self._json(resp)
        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise CloudDecodeError(f"expected a list of proxy entries, got {str(entries)[:200]}")
        return entries

    async def aclose(self) -> None:
        """Forget cached credentials; the next call logs in again."""
        self._token = None
