"""Row schemas for the entities the nomination workflow reads and writes.

Rows arrive from psycopg2 ``RealDictCursor`` queries (or the in-memory test
store) as plain dicts. ``from_row`` validates the columns we rely on and
normalizes types so the rest of the package never guesses at row shapes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from .errors import SchemaError

MEMBERSHIP_TYPES = ("non_member", "junior", "single", "family")
NON_MEMBER = "non_member"

DEFAULT_CLASS_LIMIT = 3
DEFAULT_MEMBER_PRICE = Decimal("10")
DEFAULT_NON_MEMBER_PRICE = Decimal("20")
DEFAULT_JUNIOR_PRICE = Decimal("0")


def _require(row: Dict[str, Any], key: str, entity: str) -> Any:
    if row is None:
        raise SchemaError(entity, "row is empty")
    val = row.get(key)
    if val is None:
        raise SchemaError(entity, f"missing {key}")
    return val


def _money(val: Any, default: Decimal, entity: str, key: str) -> Decimal:
    if val is None or val == "":
        return default
    try:
        return Decimal(str(val))
    except (InvalidOperation, ValueError) as exc:
        raise SchemaError(entity, f"{key} is not a number: {val!r}") from exc


def _int_or_none(val: Any, entity: str, key: str) -> Optional[int]:
    if val is None or val == "":
        return None
    try:
        return int(val)
    except (TypeError, ValueError) as exc:
        raise SchemaError(entity, f"{key} is not an integer: {val!r}") from exc


def _date_str(val: Any) -> Optional[str]:
    if val is None:
        return None
    if isinstance(val, (date, datetime)):
        return val.isoformat()[:10]
    return str(val)


def _timestamp(val: Any, entity: str, key: str) -> Optional[datetime]:
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        ts = val
    else:
        try:
            ts = datetime.fromisoformat(str(val).replace("Z", "+00:00"))
        except ValueError as exc:
            raise SchemaError(entity, f"{key} is not a timestamp: {val!r}") from exc
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def normalize_membership_type(val: Any) -> str:
    """Map stored membership types onto the known tiers; unset is non_member."""
    s = str(val or "").strip().lower().replace("-", "_").replace(" ", "_")
    return s if s in MEMBERSHIP_TYPES else NON_MEMBER


@dataclass(frozen=True)
class Household:
    id: Any
    membership_type: str = NON_MEMBER
    status: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Household":
        return cls(
            id=_require(row, "id", "household"),
            membership_type=normalize_membership_type(row.get("membership_type")),
            status=row.get("status"),
            user_id=row.get("user_id"),
        )


@dataclass(frozen=True)
class Driver:
    id: Any
    membership_id: Any
    first_name: str = ""
    last_name: str = ""
    is_junior: bool = False
    membership_type: str = NON_MEMBER
    transponder_number: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Driver":
        """Build a driver from a ``drivers`` row joined with its household.

        ``membership_type`` is read from the household join
        (``household_membership_type``); the driver's own column is only used
        when the join is absent.
        """
        ident = _require(row, "id", "driver")
        tier = row.get("household_membership_type")
        if tier is None:
            tier = row.get("membership_type")
        transponder = row.get("transponder_number")
        if not transponder:
            transponders = row.get("transponders") or []
            transponder = transponders[0] if transponders else ""
        return cls(
            id=ident,
            membership_id=row.get("membership_id"),
            first_name=str(row.get("first_name") or ""),
            last_name=str(row.get("last_name") or ""),
            is_junior=bool(row.get("is_junior")),
            membership_type=normalize_membership_type(tier),
            transponder_number=str(transponder or ""),
        )


@dataclass(frozen=True)
class Event:
    id: Any
    name: str = ""
    event_date: Optional[str] = None
    track: Optional[str] = None
    nominations_open: Optional[datetime] = None
    nominations_close: Optional[datetime] = None
    member_price: Decimal = DEFAULT_MEMBER_PRICE
    non_member_price: Decimal = DEFAULT_NON_MEMBER_PRICE
    junior_price: Decimal = DEFAULT_JUNIOR_PRICE
    class_limit: Optional[int] = DEFAULT_CLASS_LIMIT
    preference_enabled: bool = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Event":
        ident = _require(row, "id", "event")
        # class_limit: a present NULL means unlimited; an absent column means default
        if "class_limit" in row:
            limit = _int_or_none(row.get("class_limit"), "event", "class_limit")
        else:
            limit = DEFAULT_CLASS_LIMIT
        if limit is not None and limit < 0:
            raise SchemaError("event", f"class_limit is negative: {limit}")
        pref = row.get("preference_enabled")
        return cls(
            id=ident,
            name=str(row.get("name") or ""),
            event_date=_date_str(row.get("event_date")),
            track=row.get("track"),
            nominations_open=_timestamp(row.get("nominations_open"), "event", "nominations_open"),
            nominations_close=_timestamp(row.get("nominations_close"), "event", "nominations_close"),
            member_price=_money(row.get("member_price"), DEFAULT_MEMBER_PRICE, "event", "member_price"),
            non_member_price=_money(row.get("non_member_price"), DEFAULT_NON_MEMBER_PRICE, "event", "non_member_price"),
            junior_price=_money(row.get("junior_price"), DEFAULT_JUNIOR_PRICE, "event", "junior_price"),
            class_limit=limit,
            preference_enabled=True if pref is None else bool(pref),
        )

    def nominations_are_open(self, now: Optional[datetime] = None) -> bool:
        """True unless ``now`` falls before the open or after the close timestamp."""
        now = now or datetime.now(timezone.utc)
        if self.nominations_open is not None and now < self.nominations_open:
            return False
        if self.nominations_close is not None and now > self.nominations_close:
            return False
        return True


@dataclass(frozen=True)
class NominationClass:
    class_id: Any
    class_name: str = ""
    is_enabled: bool = True
    order_index: int = 0
    event_id: Any = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "NominationClass":
        name = row.get("class_name")
        if name is None:
            name = row.get("name")
        return cls(
            class_id=_require(row, "class_id", "nomination_class"),
            class_name=str(name or ""),
            is_enabled=bool(row.get("is_enabled", True)),
            order_index=_int_or_none(row.get("order_index"), "nomination_class", "order_index") or 0,
            event_id=row.get("event_id"),
        )


@dataclass(frozen=True)
class Nomination:
    id: Any
    driver_id: Any
    event_id: Any
    group_id: Optional[str] = None
    paid: bool = False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Nomination":
        return cls(
            id=_require(row, "id", "nomination"),
            driver_id=_require(row, "driver_id", "nomination"),
            event_id=_require(row, "event_id", "nomination"),
            group_id=row.get("group_id"),
            paid=bool(row.get("paid")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NominationEntry:
    nomination_id: Any
    class_id: Any
    is_preference: bool = False
    order_index: int = 0
    id: Any = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "NominationEntry":
        return cls(
            id=row.get("id"),
            nomination_id=_require(row, "nomination_id", "nomination_entry"),
            class_id=_require(row, "class_id", "nomination_entry"),
            is_preference=bool(row.get("is_preference")),
            order_index=_int_or_none(row.get("order_index"), "nomination_entry", "order_index") or 0,
        )


@dataclass
class EntryPlan:
    """Rows to write for one nomination: primary classes then the preference."""

    primary: List[Any] = field(default_factory=list)
    preference: Optional[Any] = None

    def is_empty(self) -> bool:
        return not self.primary and self.preference is None

    def rows(self) -> List[Tuple[Any, bool, int]]:
        """Return ``(class_id, is_preference, order_index)`` tuples in write order."""
        out = [(cid, False, idx) for idx, cid in enumerate(self.primary, start=1)]
        if self.preference is not None:
            out.append((self.preference, True, len(self.primary) + 1))
        return out
