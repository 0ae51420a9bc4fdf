"""
Kubernetes Node Labels Module

Resolves the labels of the Kubernetes node the exporter runs on so they can be
attached to every exported metric. The lookup happens once at startup, before
the collector is built; the result never changes afterwards.

Requirements:
    - NODE_NAME environment variable (usually set from the downward API)
    - A kubeconfig path, or in-cluster service account credentials

Label keys are sanitised into valid Prometheus label names:
    'topology.kubernetes.io/zone' -> 'topology_kubernetes_io_zone'
    '123abc' -> '_123abc'
"""
import logging
import os
import re
from typing import Dict, Optional

import urllib3.exceptions
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException

from exporter_config import ConfigurationError

logger = logging.getLogger(__name__)

NODE_LOOKUP_TIMEOUT_SECONDS = 10
_INVALID_LABEL_CHARS = re.compile(r'[^a-zA-Z0-9_]')


class NodeLabelsError(ConfigurationError):
    """Raised when the node labels cannot be resolved."""


def sanitize_label_name(name: str) -> str:
    sanitized = _INVALID_LABEL_CHARS.sub('_', name)
    if sanitized and sanitized[0].isdigit():
        sanitized = '_' + sanitized
    return sanitized


def load_cluster_configuration(kubeconfig: str = '') -> client.Configuration:
    """
    Build a client configuration for the cluster.

    Uses the explicit kubeconfig when given, otherwise the in-cluster service
    account, otherwise the default kubeconfig location.

    Raises:
        ConfigException: If no usable configuration is found
    """
    configuration = client.Configuration()
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
        return configuration
    try:
        config.load_incluster_config(client_configuration=configuration)
        return configuration
    except ConfigException as e:
        logger.debug(f"In-cluster config unavailable, falling back to kubeconfig: {e}")
    config.load_kube_config(client_configuration=configuration)
    return configuration


def resolve_static_labels(kubeconfig: str = '', node_name: Optional[str] = None) -> Dict[str, str]:
    """
    Read the labels of the current node.

    Args:
        kubeconfig: Path to a kubeconfig file (empty for in-cluster/default)
        node_name: Node to read (default: NODE_NAME environment variable)

    Returns:
        Dictionary of sanitised label names to label values

    Raises:
        NodeLabelsError: If NODE_NAME is unset or the node cannot be read
    """
    node_name = node_name or os.getenv('NODE_NAME', '')
    if not node_name:
        raise NodeLabelsError("required NODE_NAME not set")

    try:
        configuration = load_cluster_configuration(kubeconfig)
    except (ConfigException, OSError) as e:
        raise NodeLabelsError(f"load config: {e}") from e

    with client.ApiClient(configuration) as api_client:
        v1 = client.CoreV1Api(api_client)
        try:
            node = v1.read_node(node_name, _request_timeout=NODE_LOOKUP_TIMEOUT_SECONDS)
        except ApiException as e:
            raise NodeLabelsError(f"get node {node_name!r}: {e.status} {e.reason}") from e
        except urllib3.exceptions.HTTPError as e:
            raise NodeLabelsError(f"get node {node_name!r}: {e}") from e

    labels = node.metadata.labels or {}
    logger.info(f"Resolved {len(labels)} label(s) from node {node_name}")
    return {sanitize_label_name(key): value for key, value in labels.items()}
