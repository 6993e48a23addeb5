"""
Pact - the sole entity, plus the typed events that build it.

A Pact is a dead-man's switch: owner checks in every `check_in_interval`
seconds, or anyone may trigger recovery to the beneficiary.

Records are frozen. The reducer replaces a Pact wholesale, never field by field.
Integers are Python ints end to end; text-boundary values go through parse_uint(),
never float().
"""

from dataclasses import dataclass
from typing import Any, Optional, Union


def parse_uint(value: Any, field_name: str = "value") -> int:
    """
    Parse a non-negative integer from an int or decimal/hex string.

    None and "" parse to 0 (unknown). Floats and bools are rejected because
    they would silently lose precision on large timestamps/intervals.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: bool is not an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            result = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError:
            raise ValueError(f"{field_name}: not an integer string: {value!r}")
    else:
        raise ValueError(f"{field_name}: unsupported type {type(value).__name__}")
    if result < 0:
        raise ValueError(f"{field_name}: must be non-negative, got {result}")
    return result


def normalize_address(address: str) -> str:
    """Lowercase hex address. Used as the store key so checksum casing never splits a Pact."""
    return (address or "").strip().lower()


# ============================================================
# ENTITY
# ============================================================

@dataclass(frozen=True)
class Pact:
    id: str                        # Pact contract address
    owner: str
    beneficiary: str
    last_check_in: int
    created_at: int
    check_in_interval: int = 0     # 0 = not yet known (never "instant expiry")
    protected_token: str = ""
    warden: str = ""

    @property
    def interval_known(self) -> bool:
        return self.check_in_interval > 0

    @property
    def deadline(self) -> Optional[int]:
        """last_check_in + check_in_interval, or None while the interval is unknown."""
        if not self.interval_known:
            return None
        return self.last_check_in + self.check_in_interval

    def is_expired(self, now: int) -> bool:
        deadline = self.deadline
        return deadline is not None and now > deadline

    def to_dict(self) -> dict:
        """JSON-safe view. Integers as strings, like the indexer returns them."""
        return {
            "id": self.id,
            "owner": self.owner,
            "beneficiary": self.beneficiary,
            "protectedToken": self.protected_token,
            "warden": self.warden,
            "checkInInterval": str(self.check_in_interval),
            "lastCheckIn": str(self.last_check_in),
            "createdAt": str(self.created_at),
            "deadline": None if self.deadline is None else str(self.deadline),
        }


# ============================================================
# EVENTS
# ============================================================

@dataclass(frozen=True)
class PactCreated:
    """Emitted by the factory. The only event that creates a Pact."""
    pact_address: str
    owner: str
    beneficiary: str
    block_timestamp: int

    @classmethod
    def from_dict(cls, data: dict) -> "PactCreated":
        return cls(
            pact_address=normalize_address(data["pactAddress"]),
            owner=normalize_address(data.get("owner", "")),
            beneficiary=normalize_address(data.get("beneficiary", "")),
            block_timestamp=parse_uint(data["blockTimestamp"], "blockTimestamp"),
        )


@dataclass(frozen=True)
class CheckedIn:
    """Emitted by a Pact contract when its owner checks in."""
    src_address: str
    timestamp: int

    @classmethod
    def from_dict(cls, data: dict) -> "CheckedIn":
        return cls(
            src_address=normalize_address(data["srcAddress"]),
            timestamp=parse_uint(data["timestamp"], "timestamp"),
        )


@dataclass(frozen=True)
class PactDetails:
    """
    Follow-up enrichment of fields PactCreated does not carry.
    Produced by reading the Pact contract's view functions.
    """
    pact_address: str
    check_in_interval: int
    protected_token: str = ""
    warden: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "PactDetails":
        return cls(
            pact_address=normalize_address(data["pactAddress"]),
            check_in_interval=parse_uint(data.get("checkInInterval"), "checkInInterval"),
            protected_token=normalize_address(data.get("protectedToken", "")),
            warden=normalize_address(data.get("warden", "")),
        )


PactEvent = Union[PactCreated, CheckedIn, PactDetails]

EVENT_TYPES = {
    "PactCreated": PactCreated,
    "CheckedIn": CheckedIn,
    "PactDetails": PactDetails,
}


def event_from_dict(data: dict) -> PactEvent:
    """
    Decode {"type": "...", ...fields} into a typed event.

    Raises:
        KeyError / ValueError on unknown type or malformed fields.
    """
    event_type = data.get("type", "")
    cls = EVENT_TYPES.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type!r}")
    return cls.from_dict(data)
