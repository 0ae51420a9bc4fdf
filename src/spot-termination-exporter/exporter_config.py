"""
Exporter Configuration Module

This module builds the immutable runtime configuration for the spot termination
exporter. Every setting can be given as an environment variable (useful for
Docker and Kubernetes DaemonSets) or as a command-line flag; flags win over
environment variables.

Environment Variables:
    - BIND_ADDR: host:port the metrics server listens on (default: :9189)
    - METRICS_PATH: HTTP path serving the metrics (default: /metrics)
    - LOG_LEVEL: debug, info, warning, error or critical (default: info)
    - DEBUG: Force debug logging (set to 'true' to enable, default: false)
    - METADATA_ENDPOINT: Base URL of the instance metadata service
    - TOKEN_ENDPOINT: URL used to negotiate an IMDSv2 session token
    - USE_IMDSV2: Negotiate a session token before every scrape (default: false)
    - ATTACH_NODE_LABELS: Attach the Kubernetes node labels to every metric
      (default: false, requires NODE_NAME)
    - KUBECONFIG: Path to a kubeconfig file (default: in-cluster config)

Configuration errors are fatal at startup and never happen mid-scrape.
"""
import argparse
import logging
import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

DEFAULT_BIND_ADDR = ':9189'
DEFAULT_METRICS_PATH = '/metrics'
DEFAULT_METADATA_ENDPOINT = 'http://169.254.169.254/latest/meta-data/'
DEFAULT_TOKEN_ENDPOINT = 'http://169.254.169.254/latest/api/token'

TRUTHY_VALUES = ('true', '1', 'yes', 'on')
FALSY_VALUES = ('false', '0', 'no', 'off')

LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'warn': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL,
    'fatal': logging.CRITICAL,
}


class ConfigurationError(Exception):
    """Raised when the exporter cannot start with the given settings."""


@dataclass(frozen=True)
class ExporterConfig:
    bind_host: str = ''
    bind_port: int = 9189
    metrics_path: str = DEFAULT_METRICS_PATH
    log_level: int = logging.INFO
    metadata_endpoint: str = DEFAULT_METADATA_ENDPOINT
    token_endpoint: str = DEFAULT_TOKEN_ENDPOINT
    use_imdsv2: bool = False
    attach_node_labels: bool = False
    kubeconfig: str = ''


def parse_bool(value: str) -> bool:
    """
    Parse a boolean flag or environment value.

    Args:
        value: Raw value such as 'true', 'off' or '1'

    Returns:
        The parsed boolean

    Raises:
        argparse.ArgumentTypeError: If the value is not a recognised boolean
    """
    normalized = str(value).strip().lower()
    if normalized in TRUTHY_VALUES:
        return True
    if normalized in FALSY_VALUES:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {value!r}")


def env_flag(name: str, default: bool = False) -> bool:
    """
    Read a boolean environment variable.

    Raises:
        ConfigurationError: If the variable is set to an unrecognised value
    """
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return parse_bool(value)
    except argparse.ArgumentTypeError as e:
        raise ConfigurationError(f"{name}: {e}") from None


def parse_log_level(name: str) -> int:
    level = LOG_LEVELS.get(name.strip().lower())
    if level is None:
        raise ConfigurationError(f"not a valid log level: {name!r}")
    return level


def parse_bind_addr(bind_addr: str) -> Tuple[str, int]:
    """
    Split a host:port bind address.

    An empty host (':9189') listens on all interfaces. IPv6 hosts may be
    wrapped in brackets ('[::1]:9189').

    Args:
        bind_addr: Address in host:port form

    Returns:
        Tuple of (host, port)

    Raises:
        ConfigurationError: If the address has no port or the port is invalid
    """
    host, sep, port = bind_addr.rpartition(':')
    if not sep:
        raise ConfigurationError(f"bind address {bind_addr!r} is missing a port")
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"bind address {bind_addr!r} has an invalid port") from None
    if not 0 <= port_number <= 65535:
        raise ConfigurationError(f"bind address {bind_addr!r} has an out of range port")
    return host, port_number


def normalize_metrics_path(path: str) -> str:
    if not path.startswith('/'):
        path = '/' + path
    return path


def normalize_metadata_endpoint(endpoint: str) -> str:
    # metadata paths are appended directly to the endpoint
    if not endpoint.endswith('/'):
        endpoint = endpoint + '/'
    return endpoint


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='spot-termination-exporter',
        description='Prometheus exporter for AWS spot instance termination notices',
    )
    default_level = 'debug' if env_flag('DEBUG') else os.getenv('LOG_LEVEL', 'info')
    parser.add_argument('--bind-addr', default=os.getenv('BIND_ADDR', DEFAULT_BIND_ADDR),
                        help='bind address for the metrics server')
    parser.add_argument('--metrics-path', default=os.getenv('METRICS_PATH', DEFAULT_METRICS_PATH),
                        help='path to metrics endpoint')
    parser.add_argument('--log-level', default=default_level,
                        help='log level')
    parser.add_argument('--metadata-endpoint',
                        default=os.getenv('METADATA_ENDPOINT', DEFAULT_METADATA_ENDPOINT),
                        help='metadata endpoint to query')
    parser.add_argument('--token-endpoint',
                        default=os.getenv('TOKEN_ENDPOINT', DEFAULT_TOKEN_ENDPOINT),
                        help='token endpoint to query')
    parser.add_argument('--use-imdsv2', type=parse_bool, nargs='?', const=True,
                        default=env_flag('USE_IMDSV2'),
                        help='negotiate an IMDSv2 session token before each scrape')
    parser.add_argument('--attach-node-labels', type=parse_bool, nargs='?', const=True,
                        default=env_flag('ATTACH_NODE_LABELS'),
                        help='attach labels from the Kubernetes node')
    parser.add_argument('--kubeconfig', default=os.getenv('KUBECONFIG', ''),
                        help='path to kubeconfig file')
    return parser


def parse_config(argv: Optional[Sequence[str]] = None) -> ExporterConfig:
    """
    Build the exporter configuration from flags and environment variables.

    Args:
        argv: Command-line arguments (default: sys.argv[1:])

    Returns:
        Frozen ExporterConfig

    Raises:
        ConfigurationError: If the log level, bind address or a boolean
            environment variable is invalid
    """
    args = build_parser().parse_args(argv)
    host, port = parse_bind_addr(args.bind_addr)
    return ExporterConfig(
        bind_host=host,
        bind_port=port,
        metrics_path=normalize_metrics_path(args.metrics_path),
        log_level=parse_log_level(args.log_level),
        metadata_endpoint=normalize_metadata_endpoint(args.metadata_endpoint),
        token_endpoint=args.token_endpoint,
        use_imdsv2=args.use_imdsv2,
        attach_node_labels=args.attach_node_labels,
        kubeconfig=args.kubeconfig,
    )
