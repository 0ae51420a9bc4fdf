"""
Instance Metadata Payload Module

Decoders for the instance metadata documents the exporter reads on every
scrape.

Payloads:
    - spot/instance-action: {"action": "terminate", "time": "2017-09-18T08:22:00Z"}
    - events/recommendations/rebalance: {"noticeTime": "2020-10-27T08:22:00Z"}

Decoding rules:
    - The body must be a JSON object; null decodes as an empty object
    - Field names match case-insensitively when there is no exact match
    - Missing fields decode to empty values (no action, no time)
    - Present timestamps must be RFC 3339 with a UTC offset
    - Anything else raises ValueError, which the collector treats as
      "nothing actionable" rather than as a reachability failure
"""
import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

_RFC3339 = re.compile(
    r'^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$'
)


@dataclass(frozen=True)
class InstanceIdentity:
    instance_id: str
    instance_type: str


@dataclass(frozen=True)
class TerminationNotice:
    action: str = ''
    time: Optional[datetime] = None


@dataclass(frozen=True)
class RebalanceNotice:
    notice_time: Optional[datetime] = None


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an RFC 3339 timestamp into an aware datetime.

    Fractional seconds beyond microseconds are truncated.

    Args:
        value: Timestamp string such as '2017-09-18T08:22:00Z'

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If the value is not an RFC 3339 timestamp string
    """
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {type(value).__name__}")
    match = _RFC3339.match(value)
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")
    date, clock, fraction, offset = match.groups()
    if offset in ('Z', 'z'):
        offset = '+00:00'
    micros = '.' + (fraction + '000000')[:6] if fraction else ''
    return datetime.fromisoformat(f"{date}T{clock}{micros}{offset}")


def _load_object(body: str) -> Dict[str, Any]:
    try:
        document = json.loads(body)
    except RecursionError:
        raise ValueError("document is nested too deeply") from None
    # null decodes to an empty document
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError(f"expected a JSON object, got {type(document).__name__}")
    return document


def _field(document: Dict[str, Any], name: str) -> Any:
    """
    Look up a field, falling back to a case-insensitive key match.

    An exact match wins. Among case-insensitive matches the last key wins.
    """
    if name in document:
        return document[name]
    value = None
    for key, candidate in document.items():
        if key.lower() == name.lower():
            value = candidate
    return value


def parse_termination_notice(body: str) -> TerminationNotice:
    """
    Decode a spot/instance-action document.

    Raises:
        ValueError: If the body is not a valid instance-action document
    """
    document = _load_object(body)
    action = _field(document, 'action')
    if action is None:
        action = ''
    elif not isinstance(action, str):
        raise ValueError(f"action must be a string, got {type(action).__name__}")
    time = _field(document, 'time')
    return TerminationNotice(
        action=action,
        time=parse_timestamp(time) if time is not None else None,
    )


def parse_rebalance_notice(body: str) -> RebalanceNotice:
    """
    Decode an events/recommendations/rebalance document.

    Raises:
        ValueError: If the body is not a valid rebalance recommendation document
    """
    document = _load_object(body)
    notice_time = _field(document, 'noticeTime')
    return RebalanceNotice(
        notice_time=parse_timestamp(notice_time) if notice_time is not None else None,
    )
