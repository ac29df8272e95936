"""
Tests for the CLS REST client.
"""

from unittest.mock import MagicMock

import pytest
import requests

from clsexporter.cls.client import ClsClient
from clsexporter.context import FetchContext
from clsexporter.errors import ApiError, ConfigurationError, FetchCancelledError
from clsexporter.settings import Settings


def make_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session):
    return ClsClient(
        api_key="secret",
        org_name="lic-test",
        base_url="https://cls.example.com/",
        service_instance_id="default-si",
        request_timeout=15,
        session=session,
    )


class TestClsClientRequests:
    """Test cases for request construction."""

    def test_virtual_groups_url_and_headers(self, client, session):
        """Test URL layout and authentication headers."""
        session.get.return_value = make_response(payload={"virtualGroups": [{"id": 1, "name": "VG"}]})

        groups = client.list_virtual_groups(FetchContext())

        url = session.get.call_args.args[0]
        headers = session.get.call_args.kwargs["headers"]
        assert url == "https://cls.example.com/v1/org/lic-test/virtual-groups"
        assert headers["x-api-key"] == "secret"
        assert headers["accept"] == "application/json"
        assert headers["user-agent"].startswith("cls-exporter/")
        assert headers["x-nv-service-instance-id"] == "default-si"
        assert groups[0].id == 1
        assert groups[0].name == "VG"

    def test_path_segments_escaped(self, session):
        """Test that org and server ids are escaped as path segments."""
        client = ClsClient("secret", "lic/a b", session=session)
        session.get.return_value = make_response(payload={"licensePools": []})

        client.list_license_pools(FetchContext(), 7, "srv/1")

        assert session.get.call_args.args[0] == (
            "https://api.licensing.nvidia.com/v1/org/lic%2Fa%20b/virtual-groups/7/"
            "license-servers/srv%2F1/license-pools"
        )

    def test_lease_query_uses_given_service_instance(self, client, session):
        """Test that the per-call service instance overrides the default."""
        session.get.return_value = make_response(payload={"clients": [{
            "additionalProperties": {"license_server_id": "s1"},
            "leases": [{"leaseId": "L1", "leaseCount": 2}],
        }]})

        clients = client.list_active_leases(FetchContext(), 3, "si-b")

        assert session.get.call_args.args[0].endswith("/virtual-groups/3/leases")
        assert session.get.call_args.kwargs["headers"]["x-nv-service-instance-id"] == "si-b"
        assert clients[0].additional_properties.license_server_id == "s1"
        assert clients[0].leases[0].lease_count == 2

    def test_no_service_instance_header_when_unset(self, session):
        """Test that the header is omitted without any service instance."""
        client = ClsClient("secret", "lic-test", session=session)
        session.get.return_value = make_response(payload={"licenseServers": []})

        client.list_license_servers(FetchContext(), 1)

        assert "x-nv-service-instance-id" not in session.get.call_args.kwargs["headers"]

    def test_timeout_bounded_by_context(self, client, session, clock):
        """Test that the request timeout never exceeds the remaining deadline."""
        session.get.return_value = make_response(payload={"virtualGroups": []})

        client.list_virtual_groups(FetchContext(timeout=2, clock=clock))

        assert session.get.call_args.kwargs["timeout"] == 2

    def test_null_fields_use_defaults(self, client, session):
        """Test that explicit nulls decode to field defaults."""
        session.get.return_value = make_response(payload={"licenseServers": [{
            "id": "s1", "name": None, "licenseServerFeatures": None,
        }]})

        servers = client.list_license_servers(FetchContext(), 1)

        assert servers[0].name == ""
        assert servers[0].license_server_features == []


class TestClsClientErrors:
    """Test cases for error mapping."""

    def test_non_2xx_status(self, client, session):
        """Test that an error status raises ApiError with the code."""
        session.get.return_value = make_response(status_code=503)

        with pytest.raises(ApiError, match="failed with status 503") as exc_info:
            client.list_virtual_groups(FetchContext())

        assert exc_info.value.status_code == 503

    def test_transport_error(self, client, session):
        """Test that transport failures raise ApiError."""
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ApiError):
            client.list_virtual_groups(FetchContext())

    def test_invalid_json(self, client, session):
        """Test that an undecodable body raises ApiError."""
        response = make_response()
        response.json.side_effect = ValueError("no json")
        session.get.return_value = response

        with pytest.raises(ApiError, match="decode response"):
            client.list_virtual_groups(FetchContext())

    def test_unexpected_payload_shape(self, client, session):
        """Test that a payload of the wrong shape raises ApiError."""
        session.get.return_value = make_response(payload={"virtualGroups": "nope"})

        with pytest.raises(ApiError, match="unexpected payload"):
            client.list_virtual_groups(FetchContext())

    def test_cancelled_context_skips_request(self, client, session):
        """Test that no request is sent for a cancelled context."""
        ctx = FetchContext()
        ctx.cancel()

        with pytest.raises(FetchCancelledError):
            client.list_virtual_groups(ctx)

        session.get.assert_not_called()

    @pytest.mark.parametrize("api_key,org", [("", "lic-test"), ("secret", "  ")])
    def test_blank_credentials_rejected(self, api_key, org):
        """Test that the client refuses blank credentials."""
        with pytest.raises(ConfigurationError):
            ClsClient(api_key, org)

    def test_from_settings(self, session):
        """Test construction from settings."""
        settings = Settings(
            nvidia_org_name="lic-test",
            nvidia_api_key="secret",
            nvidia_api_base_url="https://cls.example.com",
            request_timeout="5s",
        )

        client = ClsClient.from_settings(settings, session=session)

        assert client.base_url == "https://cls.example.com"
        assert client.request_timeout == 5.0
        assert client.org_name == "lic-test"
