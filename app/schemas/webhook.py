# app/schemas/webhook.py
import re
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


Disposition = Literal["ANSWERED", "NO ANSWER", "BUSY", "FAILED", "CONGESTION"]

_INTERNAL_EXTENSION = re.compile(r"^[1-8]\d{3}$")
_UCM_DATE = "%Y-%m-%d %H:%M:%S"

_TEXT_FIELDS = (
    "uniqueid", "linkedid", "session", "callid", "src", "dst", "clid",
    "start", "answer", "end", "amaflags", "dcontext", "channel", "dstchannel",
    "recording_filename", "lastapp", "lastdata", "accountcode", "userfield",
    "did", "outbound_cnum", "outbound_cnam", "dst_cnam", "peeraccount",
    "sequence", "src_trunk_name", "dst_trunk_name",
)


class GrandstreamCdrPayload(BaseModel):
    """
    CDR event posted by a Grandstream UCM when a call ends.
    """

    model_config = ConfigDict(extra="allow")

    event: str = "cdr"

    # Call identifiers
    uniqueid: str = Field(min_length=1)
    linkedid: Optional[str] = None
    session: Optional[str] = None
    callid: Optional[str] = None

    # Parties
    src: str = Field(min_length=1)
    dst: str = Field(min_length=1)
    clid: Optional[str] = None

    # Timing (strings straight from the UCM)
    start: Optional[str] = None
    answer: Optional[str] = None
    end: Optional[str] = None
    duration: Optional[float] = None
    billsec: Optional[float] = None

    disposition: Disposition = "FAILED"
    amaflags: Optional[str] = None

    dcontext: Optional[str] = None
    channel: Optional[str] = None
    dstchannel: Optional[str] = None

    recording_filename: Optional[str] = None

    lastapp: Optional[str] = None
    lastdata: Optional[str] = None
    accountcode: Optional[str] = None
    userfield: Optional[str] = None
    did: Optional[str] = None
    outbound_cnum: Optional[str] = None
    outbound_cnam: Optional[str] = None
    dst_cnam: Optional[str] = None
    peeraccount: Optional[str] = None
    sequence: Optional[str] = None
    src_trunk_name: Optional[str] = None
    dst_trunk_name: Optional[str] = None

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def numbers_to_text(cls, value):
        # UCMs sometimes send extensions and ids as JSON numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("duration", "billsec", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value


def determine_call_direction(payload: GrandstreamCdrPayload) -> str:
    """
    Infer inbound/outbound/internal from trunk names and number shapes.
    """
    if payload.dst_trunk_name:
        return "outbound"
    if payload.src_trunk_name:
        return "inbound"

    # Both sides look like 4-digit extensions -> internal call
    if _INTERNAL_EXTENSION.match(payload.src) and _INTERNAL_EXTENSION.match(payload.dst):
        return "internal"

    # External caller ids are long
    if len(payload.src) >= 10:
        return "inbound"

    return "outbound"


def parse_webhook_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse ISO-8601 or the UCM's "YYYY-MM-DD HH:MM:SS". Returns None when the
    value is empty or unparseable. Aware datetimes are converted to naive UTC.
    """
    if not value:
        return None

    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.strptime(text, _UCM_DATE)
        except ValueError:
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
