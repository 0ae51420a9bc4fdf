"""
Prometheus Metrics Definitions Module - Spot Termination Exporter

This module defines the Prometheus gauge descriptors exported for an AWS EC2
instance. Readings are recomputed on every scrape by the termination collector,
so the descriptors are plain immutable definitions rather than registered
prometheus_client Gauge objects.

Metrics:
    - aws_instance_metadata_service_available: Metadata service reachable
        Labels: instance_id
        Values: 1 (reachable), 0 (transport error)

    - aws_instance_metadata_service_events_available: Rebalance events endpoint reachable
        Labels: instance_id
        Values: 1 (reachable), 0 (transport error)

    - aws_instance_termination_imminent: Spot interruption notice present
        Labels: instance_action, instance_id, instance_type
        Values: 1 (notice present), 0 (no notice)

    - aws_instance_termination_in: Seconds until the instance is terminated
        Labels: instance_id, instance_type
        Values: Seconds, only exported while the termination time is in the future

    - aws_instance_rebalance_recommended: Rebalance recommendation present
        Labels: instance_id, instance_type
        Values: 1 (recommended), 0 (not recommended)

Every metric additionally carries the static labels resolved at startup (for
example the Kubernetes node labels).
"""
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Iterable, List, Mapping, NamedTuple, Sequence, Tuple

from prometheus_client.core import GaugeMetricFamily

from exporter_config import ConfigurationError


@dataclass(frozen=True)
class MetricDescriptor:
    name: str
    documentation: str
    labelnames: Tuple[str, ...]
    const_labels: Tuple[Tuple[str, str], ...] = ()

    def with_const_labels(self, labels: Mapping[str, str]) -> 'MetricDescriptor':
        """
        Return a copy of this descriptor carrying the given static labels.

        Raises:
            ConfigurationError: If a static label is reserved or clashes with
                one of the descriptor's own label names
        """
        for key in labels:
            if key in self.labelnames:
                raise ConfigurationError(
                    f"static label {key!r} clashes with a label of {self.name}")
            if key.startswith('__'):
                raise ConfigurationError(f"static label {key!r} uses a reserved prefix")
        return replace(self, const_labels=tuple(sorted(labels.items())))

    @property
    def all_labelnames(self) -> List[str]:
        return list(self.labelnames) + [key for key, _ in self.const_labels]

    def family(self) -> GaugeMetricFamily:
        return GaugeMetricFamily(self.name, self.documentation, labels=self.all_labelnames)

    def label_values(self, values: Sequence[str]) -> List[str]:
        if len(values) != len(self.labelnames):
            raise ValueError(
                f"{self.name} expects {len(self.labelnames)} label values, got {len(values)}")
        return list(values) + [value for _, value in self.const_labels]


class MetricReading(NamedTuple):
    descriptor: MetricDescriptor
    value: float
    labels: Tuple[str, ...]


# Metadata service reachability (instance-id is always known at this point)
metadata_service_available = MetricDescriptor(
    'aws_instance_metadata_service_available',
    'Metadata service available',
    ('instance_id',),
)

# Rebalance recommendation events endpoint reachability
metadata_service_events_available = MetricDescriptor(
    'aws_instance_metadata_service_events_available',
    'Metadata service events endpoint available',
    ('instance_id',),
)

# Spot interruption notice, instance_action is empty when no notice is known
termination_imminent = MetricDescriptor(
    'aws_instance_termination_imminent',
    'Instance is about to be terminated',
    ('instance_action', 'instance_id', 'instance_type'),
)

termination_in = MetricDescriptor(
    'aws_instance_termination_in',
    'Instance will be terminated in',
    ('instance_id', 'instance_type'),
)

rebalance_recommended = MetricDescriptor(
    'aws_instance_rebalance_recommended',
    'Instance rebalance is recommended',
    ('instance_id', 'instance_type'),
)


class Descriptors(NamedTuple):
    metadata_available: MetricDescriptor
    events_available: MetricDescriptor
    termination_imminent: MetricDescriptor
    termination_in: MetricDescriptor
    rebalance_recommended: MetricDescriptor


def build_descriptors(static_labels: Mapping[str, str]) -> Descriptors:
    return Descriptors(
        metadata_available=metadata_service_available.with_const_labels(static_labels),
        events_available=metadata_service_events_available.with_const_labels(static_labels),
        termination_imminent=termination_imminent.with_const_labels(static_labels),
        termination_in=termination_in.with_const_labels(static_labels),
        rebalance_recommended=rebalance_recommended.with_const_labels(static_labels),
    )


def readings_to_families(readings: Iterable[MetricReading]) -> List[GaugeMetricFamily]:
    """
    Group readings into one GaugeMetricFamily per metric, in emission order.
    """
    families = OrderedDict()
    for reading in readings:
        family = families.get(reading.descriptor.name)
        if family is None:
            family = families[reading.descriptor.name] = reading.descriptor.family()
        family.add_metric(reading.descriptor.label_values(reading.labels), reading.value)
    return list(families.values())
