"""Shared fixtures: an in-memory stand-in for the metadata service."""

from datetime import datetime, timezone

import pytest
import requests

from exporter_config import ExporterConfig
from termination_collector import TerminationCollector


METADATA_ENDPOINT = "http://imds.test/latest/meta-data/"
TOKEN_ENDPOINT = "http://imds.test/latest/api/token"
NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """Answers requests from a dict of path -> FakeResponse or exception.

    Paths missing from the dict answer 404.
    """

    def __init__(self, routes=None, token="session-token"):
        self.routes = dict(routes or {})
        self.token = token
        self.calls = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True
        return False

    def get(self, url, headers=None, timeout=None):
        self.calls.append(("GET", url, dict(headers or {}), timeout))
        path = url[len(METADATA_ENDPOINT):]
        outcome = self.routes.get(path, FakeResponse(404, "Not Found"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def put(self, url, headers=None, timeout=None):
        self.calls.append(("PUT", url, dict(headers or {}), timeout))
        if isinstance(self.token, Exception):
            raise self.token
        return FakeResponse(200, self.token)

    @property
    def get_paths(self):
        return [url[len(METADATA_ENDPOINT):] for method, url, _, _ in self.calls if method == "GET"]


def identity_routes(instance_id="i-1234", instance_type="m5.large"):
    return {
        "instance-id": FakeResponse(200, instance_id),
        "instance-type": FakeResponse(200, instance_type),
    }


def connection_error():
    return requests.ConnectionError("connection refused")


@pytest.fixture
def config():
    return ExporterConfig(metadata_endpoint=METADATA_ENDPOINT, token_endpoint=TOKEN_ENDPOINT)


@pytest.fixture
def make_collector(config):
    """Build a collector whose sessions are the given FakeSession."""

    def _make(session, static_labels=None, use_imdsv2=False, now=NOW):
        cfg = ExporterConfig(
            metadata_endpoint=config.metadata_endpoint,
            token_endpoint=config.token_endpoint,
            use_imdsv2=use_imdsv2,
        )
        return TerminationCollector(cfg, static_labels, session_factory=lambda: session, clock=lambda: now)

    return _make


def summarize(readings):
    """Flatten readings into comparable (name, value, labels) tuples."""
    return [(r.descriptor.name, r.value, r.labels) for r in readings]
