# tests/test_webhook_schema.py
from datetime import datetime

import pytest

from app.schemas.webhook import (
    GrandstreamCdrPayload,
    determine_call_direction,
    parse_webhook_date,
)


def _payload(**fields):
    data = {"uniqueid": "u1", "src": "1001", "dst": "1002"}
    data.update(fields)
    return GrandstreamCdrPayload.model_validate(data)


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"dst_trunk_name": "SIP-Trunk", "src": "1001", "dst": "15551234567"}, "outbound"),
        ({"src_trunk_name": "SIP-Trunk", "src": "15551234567", "dst": "1001"}, "inbound"),
        # trunk names win over number shapes
        ({"dst_trunk_name": "T", "src_trunk_name": "T"}, "outbound"),
        ({"src": "1001", "dst": "8999"}, "internal"),
        ({"src": "0123", "dst": "1001"}, "outbound"),
        ({"src": "9001", "dst": "1001"}, "outbound"),
        ({"src": "+15551234567", "dst": "1001"}, "inbound"),
        ({"src": "5551234", "dst": "1001"}, "outbound"),
    ],
)
def test_determine_call_direction(fields, expected):
    assert determine_call_direction(_payload(**fields)) == expected


def test_disposition_defaults_to_failed():
    assert _payload().disposition == "FAILED"


def test_blank_duration_is_none():
    assert _payload(duration="", billsec=" ").duration is None


def test_extra_fields_are_kept():
    assert _payload(custom_field="x").model_dump()["custom_field"] == "x"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-01-15 10:00:00", datetime(2024, 1, 15, 10, 0, 0)),
        ("2024-01-15T10:00:00", datetime(2024, 1, 15, 10, 0, 0)),
        ("2024-01-15T10:00:00Z", datetime(2024, 1, 15, 10, 0, 0)),
        ("2024-01-15T12:00:00+02:00", datetime(2024, 1, 15, 10, 0, 0)),
        ("", None),
        (None, None),
        ("yesterday-ish", None),
    ],
)
def test_parse_webhook_date(value, expected):
    assert parse_webhook_date(value) == expected
