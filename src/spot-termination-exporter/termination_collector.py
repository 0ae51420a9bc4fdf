"""
Spot Termination Collector Module

Custom prometheus_client collector that queries the instance metadata service
on every scrape and turns the answers into gauge readings. Nothing is cached
between scrapes, so concurrent scrapes need no locking.

Scrape Pipeline:
    1. Token phase (only with IMDSv2): negotiate a session token.
       Failure aborts the scrape, no metrics are exported.
    2. Identity phase: read instance-id and instance-type.
       A transport error or 404 aborts the scrape, no metrics are exported.
    3. Termination phase: read spot/instance-action.
       - transport error -> metadata_service_available=0, no termination metrics
       - 404 or undecodable body -> available=1, termination_imminent=0
       - notice -> available=1, termination_imminent=1{instance_action=<action>}
         and termination_in=<seconds> while the termination time is in the future
    4. Rebalance phase: read events/recommendations/rebalance.
       - transport error -> metadata_service_events_available=0, nothing else
       - 404 or undecodable body -> events_available=1, rebalance_recommended=0
       - recommendation -> events_available=1, rebalance_recommended=1

Each phase returns a PhaseResult tagged OK, SKIP or ABORT so the transitions can
be tested in isolation. No exception escapes a scrape: every outcome is either
a reading or a log line.
"""
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, List, Mapping, NamedTuple, Optional

import requests

from exporter_config import ExporterConfig
from gauges import MetricReading, build_descriptors, readings_to_families
from metadata_client import MetadataClient
from notices import InstanceIdentity, parse_rebalance_notice, parse_termination_notice

logger = logging.getLogger(__name__)

INSTANCE_ID_PATH = 'instance-id'
INSTANCE_TYPE_PATH = 'instance-type'
INSTANCE_ACTION_PATH = 'spot/instance-action'
REBALANCE_PATH = 'events/recommendations/rebalance'


class Outcome(enum.Enum):
    OK = 'ok'
    SKIP = 'skip'
    ABORT = 'abort'


class PhaseResult(NamedTuple):
    outcome: Outcome
    value: Any = None

    @classmethod
    def ok(cls, value: Any = None) -> 'PhaseResult':
        return cls(Outcome.OK, value)

    @classmethod
    def skip(cls) -> 'PhaseResult':
        return cls(Outcome.SKIP)

    @classmethod
    def abort(cls, error: Any = None) -> 'PhaseResult':
        return cls(Outcome.ABORT, error)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TerminationCollector:
    def __init__(self, config: ExporterConfig,
                 static_labels: Optional[Mapping[str, str]] = None,
                 session_factory: Callable[[], requests.Session] = requests.Session,
                 clock: Callable[[], datetime] = utcnow):
        self.config = config
        self.descriptors = build_descriptors(dict(static_labels or {}))
        self._session_factory = session_factory
        self._clock = clock

    def describe(self) -> Iterator:
        for descriptor in self.descriptors:
            yield descriptor.family()

    def collect(self) -> Iterator:
        yield from readings_to_families(self.scrape())

    def scrape(self) -> List[MetricReading]:
        """
        Run one full metadata lookup and return the resulting readings.

        Returns:
            The readings for this scrape, empty when the scrape was aborted
        """
        logger.info("Fetching termination data from metadata-service")
        with self._session_factory() as session:
            client = MetadataClient(self.config.metadata_endpoint,
                                    self.config.token_endpoint, session=session)

            token = self.token_phase(client)
            if token.outcome is not Outcome.OK:
                return []

            identity = self.identity_phase(client, token.value)
            if identity.outcome is not Outcome.OK:
                return []

            readings = self.termination_phase(client, token.value, identity.value)
            readings.extend(self.rebalance_phase(client, token.value, identity.value))
        return readings

    def lookup(self, client: MetadataClient, path: str, token: Optional[str]) -> PhaseResult:
        """
        Fetch one metadata path and classify the response.

        Returns:
            OK with the body, SKIP on 404, ABORT with the error on transport failure
        """
        try:
            response = client.fetch(path, token)
        except requests.RequestException as e:
            return PhaseResult.abort(e)
        if response.not_found:
            return PhaseResult.skip()
        return PhaseResult.ok(response.body)

    def token_phase(self, client: MetadataClient) -> PhaseResult:
        if not self.config.use_imdsv2:
            return PhaseResult.ok(None)
        try:
            return PhaseResult.ok(client.negotiate_token())
        except requests.RequestException as e:
            logger.error(f"couldn't fetch token for IMDSv2: {e}")
            return PhaseResult.abort(e)

    def identity_phase(self, client: MetadataClient, token: Optional[str]) -> PhaseResult:
        values = []
        for path in (INSTANCE_ID_PATH, INSTANCE_TYPE_PATH):
            result = self.lookup(client, path, token)
            if result.outcome is Outcome.ABORT:
                logger.error(f"couldn't parse {path} from metadata: {result.value}")
                return result
            if result.outcome is Outcome.SKIP:
                logger.error(f"couldn't parse {path} from metadata: endpoint not found")
                return PhaseResult.abort()
            values.append(result.value)
        return PhaseResult.ok(InstanceIdentity(*values))

    def termination_phase(self, client: MetadataClient, token: Optional[str],
                          identity: InstanceIdentity) -> List[MetricReading]:
        d = self.descriptors
        instance_id, instance_type = identity.instance_id, identity.instance_type
        result = self.lookup(client, INSTANCE_ACTION_PATH, token)

        if result.outcome is Outcome.ABORT:
            logger.error(f"Failed to fetch data from metadata service: {result.value}")
            return [MetricReading(d.metadata_available, 0, (instance_id,))]

        readings = [MetricReading(d.metadata_available, 1, (instance_id,))]
        not_imminent = MetricReading(d.termination_imminent, 0, ('', instance_id, instance_type))

        if result.outcome is Outcome.SKIP:
            logger.debug("instance-action endpoint not found")
            readings.append(not_imminent)
            return readings

        # the field may hold something other than a notice, so this is not fatal
        try:
            notice = parse_termination_notice(result.value)
        except ValueError as e:
            logger.error(f"Couldn't parse instance-action metadata: {e} "
                         f"(instanceID: {instance_id}, instanceType: {instance_type})")
            readings.append(not_imminent)
            return readings

        logger.info(f"instance-action endpoint available, termination time: {notice.time}")
        readings.append(MetricReading(d.termination_imminent, 1,
                                      (notice.action, instance_id, instance_type)))
        if notice.time is not None:
            delta = (notice.time - self._clock()).total_seconds()
            if delta > 0:
                readings.append(MetricReading(d.termination_in, delta,
                                              (instance_id, instance_type)))
        return readings

    def rebalance_phase(self, client: MetadataClient, token: Optional[str],
                        identity: InstanceIdentity) -> List[MetricReading]:
        d = self.descriptors
        instance_id, instance_type = identity.instance_id, identity.instance_type
        result = self.lookup(client, REBALANCE_PATH, token)

        if result.outcome is Outcome.ABORT:
            logger.error(f"Failed to fetch events data from metadata service: {result.value}")
            return [MetricReading(d.events_available, 0, (instance_id,))]

        readings = [MetricReading(d.events_available, 1, (instance_id,))]
        if result.outcome is Outcome.SKIP:
            logger.debug("rebalance endpoint not found")
            readings.append(MetricReading(d.rebalance_recommended, 0, (instance_id, instance_type)))
            return readings

        try:
            notice = parse_rebalance_notice(result.value)
        except ValueError as e:
            logger.error(f"Couldn't parse rebalance recommendation event metadata: {e}")
            readings.append(MetricReading(d.rebalance_recommended, 0, (instance_id, instance_type)))
            return readings

        logger.info(f"rebalance recommendation event endpoint available, "
                    f"recommendation time: {notice.notice_time}")
        readings.append(MetricReading(d.rebalance_recommended, 1, (instance_id, instance_type)))
        return readings
