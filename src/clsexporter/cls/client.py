"""
HTTP client for the NVIDIA Cloud License Service (CLS) REST API.

Wraps a ``requests.Session`` with the API key, org path segment and the
optional service-instance header, and decodes each endpoint's JSON into the
payload models. Every call checks the fetch context first and bounds its
timeout by the context's remaining deadline.
"""

import logging
from typing import List, Optional, Type, TypeVar
from urllib.parse import quote

import requests
from pydantic import ValidationError

from .. import __version__
from ..context import FetchContext
from ..errors import ApiError, ConfigurationError, FetchCancelledError
from ..settings import DEFAULT_BASE_URL, Settings
from .models import (
    ActiveLeaseClient,
    ActiveLeasesResponse,
    ApiModel,
    LicensePool,
    LicensePoolsResponse,
    LicenseServer,
    LicenseServersResponse,
    VirtualGroup,
    VirtualGroupsResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 15.0
SERVICE_INSTANCE_HEADER = "x-nv-service-instance-id"
USER_AGENT = f"cls-exporter/{__version__}"

ResponseT = TypeVar("ResponseT", bound=ApiModel)


def _escape(segment: str) -> str:
    return quote(str(segment), safe="")


class ClsClient:
    """
    Client for the CLS endpoints the exporter needs.

    Args:
        api_key: API key sent as ``x-api-key``
        org_name: Organization name used as a path segment
        base_url: API base URL, trailing slash ignored
        service_instance_id: Default value for the service-instance header
        request_timeout: Upper bound in seconds for a single request
        session: Optional pre-configured ``requests.Session``

    Raises:
        ConfigurationError: If the API key or org name is blank
    """

    def __init__(
        self,
        api_key: str,
        org_name: str,
        base_url: str = DEFAULT_BASE_URL,
        service_instance_id: str = "",
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        if not (api_key or "").strip():
            raise ConfigurationError("api key is required")
        if not (org_name or "").strip():
            raise ConfigurationError("org name is required")

        self.api_key = api_key.strip()
        self.org_name = org_name.strip()
        self.base_url = (base_url or "").strip().rstrip("/") or DEFAULT_BASE_URL
        self.service_instance_id = (service_instance_id or "").strip()
        self.request_timeout = (
            request_timeout if request_timeout and request_timeout > 0
            else DEFAULT_REQUEST_TIMEOUT
        )
        self.session = session or requests.Session()

    @classmethod
    def from_settings(
        cls, settings: Settings, session: Optional[requests.Session] = None
    ) -> "ClsClient":
        return cls(
            api_key=settings.nvidia_api_key,
            org_name=settings.nvidia_org_name,
            base_url=settings.nvidia_api_base_url,
            service_instance_id=settings.nvidia_service_instance_id,
            request_timeout=settings.request_timeout,
            session=session,
        )

    def _org_url(self, *segments) -> str:
        path = "/".join(_escape(segment) for segment in segments)
        url = f"{self.base_url}/v1/org/{_escape(self.org_name)}"
        return f"{url}/{path}" if path else url

    def list_virtual_groups(self, ctx: FetchContext) -> List[VirtualGroup]:
        url = self._org_url("virtual-groups")
        return self._get_json(ctx, url, VirtualGroupsResponse).virtual_groups

    def list_license_servers(
        self, ctx: FetchContext, virtual_group_id: int
    ) -> List[LicenseServer]:
        url = self._org_url("virtual-groups", virtual_group_id, "license-servers")
        return self._get_json(ctx, url, LicenseServersResponse).license_servers

    def list_license_pools(
        self, ctx: FetchContext, virtual_group_id: int, server_id: str
    ) -> List[LicensePool]:
        url = self._org_url(
            "virtual-groups", virtual_group_id, "license-servers", server_id,
            "license-pools",
        )
        return self._get_json(ctx, url, LicensePoolsResponse).license_pools

    def list_active_leases(
        self, ctx: FetchContext, virtual_group_id: int, service_instance_id: str
    ) -> List[ActiveLeaseClient]:
        url = self._org_url("virtual-groups", virtual_group_id, "leases")
        response = self._get_json(
            ctx, url, ActiveLeasesResponse, service_instance_id=service_instance_id
        )
        return response.clients

    def _headers(self, service_instance_id: str = "") -> dict:
        headers = {
            "x-api-key": self.api_key,
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        instance = (service_instance_id or "").strip() or self.service_instance_id
        if instance:
            headers[SERVICE_INSTANCE_HEADER] = instance
        return headers

    def _timeout(self, ctx: FetchContext) -> float:
        remaining = ctx.remaining()
        if remaining is None:
            return self.request_timeout
        if remaining <= 0:
            raise FetchCancelledError("context deadline exceeded")
        return min(self.request_timeout, remaining)

    def _get_json(
        self,
        ctx: FetchContext,
        url: str,
        model: Type[ResponseT],
        service_instance_id: str = "",
    ) -> ResponseT:
        """
        GET ``url`` and decode the body into ``model``.

        Raises:
            FetchCancelledError: If the context is cancelled or expired
            ApiError: On transport failure, non-2xx status or bad payload
        """
        ctx.check()
        timeout = self._timeout(ctx)

        logger.debug(f"GET {url}")
        try:
            response = self.session.get(
                url, headers=self._headers(service_instance_id), timeout=timeout
            )
        except requests.RequestException as e:
            raise ApiError(f"request {url} failed: {e}", url=url) from e

        with response:
            if response.status_code < 200 or response.status_code > 299:
                raise ApiError(
                    f"request {url} failed with status {response.status_code}",
                    url=url,
                    status_code=response.status_code,
                )
            try:
                payload = response.json()
            except ValueError as e:
                raise ApiError(f"decode response from {url}: {e}", url=url) from e

        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ApiError(f"unexpected payload from {url}: {e}", url=url) from e

    def close(self) -> None:
        self.session.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(base_url={self.base_url!r}, org={self.org_name!r})"
