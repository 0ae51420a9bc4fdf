"""
Spot Termination Prometheus Exporter - Main Entry Point

This exporter watches the AWS EC2 instance metadata service for spot
interruption notices and rebalance recommendations and publishes them as
Prometheus gauges. It is meant to run on every spot node, typically as a
Kubernetes DaemonSet.

Key Features:
    - Pull based: the metadata service is queried on every scrape, nothing is cached
    - Optional IMDSv2 session tokens
    - Optional Kubernetes node labels attached to every metric

The exporter exposes metrics on :9189/metrics by default (see exporter_config
for every flag and environment variable) and runs until SIGINT, SIGTERM or
SIGQUIT is received.

Functions:
    - configure_logging: Sets up the root logger
    - wait_for_exit_signal: Blocks until a termination signal arrives
    - main: Entry point that builds the collector and starts the metrics server
"""
import logging
import signal
import sys
import threading
from typing import Optional, Sequence

from prometheus_client import CollectorRegistry

from exporter_config import ConfigurationError, parse_config
from metrics_server import create_app, start_metrics_server
from node_labels import resolve_static_labels
from termination_collector import TerminationCollector

logger = logging.getLogger(__name__)

EXIT_SIGNALS = tuple(
    getattr(signal, name) for name in ('SIGINT', 'SIGTERM', 'SIGQUIT') if hasattr(signal, name)
)


def configure_logging(level: int = logging.INFO):
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger().setLevel(level)


def wait_for_exit_signal(signals: Sequence[int] = EXIT_SIGNALS) -> signal.Signals:
    """
    Block the calling (main) thread until one of the given signals arrives.

    Returns:
        The signal that was caught
    """
    caught = []
    received = threading.Event()

    def handler(signum, frame):
        caught.append(signal.Signals(signum))
        received.set()

    for signum in signals:
        signal.signal(signum, handler)
    received.wait()
    return caught[0]


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the exporter.

    Returns:
        Process exit status
    """
    try:
        config = parse_config(argv)
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    configure_logging(config.log_level)
    logger.info("Starting spot-termination-exporter")
    logger.debug(f"Configuration: {config}")

    static_labels = {}
    if config.attach_node_labels:
        try:
            static_labels = resolve_static_labels(config.kubeconfig)
        except ConfigurationError as e:
            logger.error(f"Failed to get node labels: {e}")
            return 1

    logger.debug("registering term exporter")
    try:
        collector = TerminationCollector(config, static_labels)
    except ConfigurationError as e:
        logger.error(f"Failed to create termination collector: {e}")
        return 1
    registry = CollectorRegistry()
    registry.register(collector)

    app = create_app(registry, config.metrics_path)
    try:
        httpd, thread = start_metrics_server(app, config.bind_host, config.bind_port)
    except OSError as e:
        logger.error(f"Failed to start metrics server on {config.bind_host}:{config.bind_port}: {e}")
        return 1

    exit_signal = wait_for_exit_signal()
    logger.info(f"Caught {exit_signal.name} signal, exiting")
    httpd.shutdown()
    thread.join()
    httpd.server_close()
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
