"""Tests for the instance metadata HTTP client."""

from unittest import mock

import pytest
import requests

from conftest import FakeResponse
from metadata_client import MetadataClient, MetadataResponse


@pytest.fixture
def session():
    return mock.Mock(spec=requests.Session)


@pytest.fixture
def client(session):
    return MetadataClient("http://imds.test/latest/meta-data/", "http://imds.test/latest/api/token", session=session)


class TestMetadataClient:
    def test_fetch_without_token(self, client, session):
        session.get.return_value = FakeResponse(200, "i-1234")

        response = client.fetch("instance-id")

        assert response == MetadataResponse(200, "i-1234")
        session.get.assert_called_once_with(
            "http://imds.test/latest/meta-data/instance-id", headers={}, timeout=1)

    def test_fetch_with_token(self, client, session):
        session.get.return_value = FakeResponse(200, "m5.large")

        client.fetch("instance-type", "tok")

        _, kwargs = session.get.call_args
        assert kwargs["headers"] == {"X-aws-ec2-metadata-token": "tok"}

    def test_not_found_is_a_response(self, client, session):
        session.get.return_value = FakeResponse(404, "Not Found")

        response = client.fetch("spot/instance-action")

        assert response.not_found

    def test_transport_errors_propagate(self, client, session):
        session.get.side_effect = requests.ConnectTimeout("timed out")

        with pytest.raises(requests.RequestException):
            client.fetch("instance-id")

    def test_negotiate_token_sends_ttl_header(self, client, session):
        session.put.return_value = FakeResponse(200, "AQAEAtoken==")

        token = client.negotiate_token()

        assert token == "AQAEAtoken=="
        session.put.assert_called_once_with(
            "http://imds.test/latest/api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": "21600"},
            timeout=1,
        )

    def test_negotiate_token_errors_propagate(self, client, session):
        session.put.side_effect = requests.ConnectionError("refused")

        with pytest.raises(requests.ConnectionError):
            client.negotiate_token()
