"""Tests for flag and environment variable configuration."""

import argparse
import logging

import pytest

from exporter_config import (
    DEFAULT_METADATA_ENDPOINT,
    DEFAULT_TOKEN_ENDPOINT,
    ConfigurationError,
    parse_bind_addr,
    parse_bool,
    parse_config,
)

ENV_VARS = (
    "BIND_ADDR", "METRICS_PATH", "LOG_LEVEL", "DEBUG", "METADATA_ENDPOINT",
    "TOKEN_ENDPOINT", "USE_IMDSV2", "ATTACH_NODE_LABELS", "KUBECONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestParseConfig:
    def test_defaults(self):
        config = parse_config([])

        assert config.bind_host == ""
        assert config.bind_port == 9189
        assert config.metrics_path == "/metrics"
        assert config.log_level == logging.INFO
        assert config.metadata_endpoint == DEFAULT_METADATA_ENDPOINT
        assert config.token_endpoint == DEFAULT_TOKEN_ENDPOINT
        assert config.use_imdsv2 is False
        assert config.attach_node_labels is False
        assert config.kubeconfig == ""

    def test_flags(self):
        config = parse_config([
            "--bind-addr", "127.0.0.1:9000",
            "--metrics-path", "prom",
            "--log-level", "debug",
            "--metadata-endpoint", "http://localhost:1338/latest/meta-data",
            "--use-imdsv2",
            "--attach-node-labels=true",
            "--kubeconfig", "/tmp/kubeconfig",
        ])

        assert (config.bind_host, config.bind_port) == ("127.0.0.1", 9000)
        assert config.metrics_path == "/prom"
        assert config.log_level == logging.DEBUG
        assert config.metadata_endpoint == "http://localhost:1338/latest/meta-data/"
        assert config.use_imdsv2 is True
        assert config.attach_node_labels is True
        assert config.kubeconfig == "/tmp/kubeconfig"

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("BIND_ADDR", ":9999")
        monkeypatch.setenv("USE_IMDSV2", "yes")
        monkeypatch.setenv("LOG_LEVEL", "warning")

        config = parse_config([])

        assert config.bind_port == 9999
        assert config.use_imdsv2 is True
        assert config.log_level == logging.WARNING

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("USE_IMDSV2", "true")

        assert parse_config(["--use-imdsv2=false"]).use_imdsv2 is False

    def test_debug_environment_forces_debug_level(self, monkeypatch):
        monkeypatch.setenv("DEBUG", "true")

        assert parse_config([]).log_level == logging.DEBUG

    @pytest.mark.parametrize("name", ["USE_IMDSV2", "ATTACH_NODE_LABELS", "DEBUG"])
    def test_unrecognised_boolean_environment_value(self, monkeypatch, name):
        monkeypatch.setenv(name, "ture")

        with pytest.raises(ConfigurationError, match=name):
            parse_config([])

    def test_blank_boolean_environment_value_uses_default(self, monkeypatch):
        monkeypatch.setenv("USE_IMDSV2", " ")

        assert parse_config([]).use_imdsv2 is False

    def test_invalid_log_level(self):
        with pytest.raises(ConfigurationError):
            parse_config(["--log-level", "chatty"])

    def test_config_is_immutable(self):
        config = parse_config([])

        with pytest.raises(AttributeError):
            config.use_imdsv2 = True


class TestParseBindAddr:
    @pytest.mark.parametrize("value, expected", [
        (":9189", ("", 9189)),
        ("0.0.0.0:80", ("0.0.0.0", 80)),
        ("[::1]:9189", ("::1", 9189)),
    ])
    def test_valid(self, value, expected):
        assert parse_bind_addr(value) == expected

    @pytest.mark.parametrize("value", ["9189", "localhost:http", ":70000"])
    def test_invalid(self, value):
        with pytest.raises(ConfigurationError):
            parse_bind_addr(value)


def test_parse_bool():
    assert parse_bool("ON") is True
    assert parse_bool("0") is False
    with pytest.raises(argparse.ArgumentTypeError):
        parse_bool("maybe")
