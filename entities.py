"""
Plain records the scoring and pricing core works on.

The repository converts ORM rows into these so the core never touches a
session. All datetimes are naive UTC.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


@dataclass
class Rider:
    id: int
    name: str
    team: str = ""
    constructor_id: Optional[int] = None
    price: int = 0
    initial_price: int = 0
    condition: Optional[str] = None


@dataclass
class Constructor:
    id: int
    name: str
    price: int = 0
    initial_price: int = 0


@dataclass
class Race:
    id: int
    round: int
    gp_name: str
    race_date: Optional[datetime] = None
    prices_adjusted: bool = False
    location: Optional[str] = None


@dataclass
class Participant:
    id: int
    name: str
    rider_ids: List[int] = field(default_factory=list)


@dataclass
class TeamSnapshot:
    id: int
    participant_id: int
    race_id: Optional[int]
    rider_ids: List[int]
    constructor_id: Optional[int]
    created_at: datetime


@dataclass
class RoundPoints:
    race_id: int
    rider_id: int
    total: float = 0.0
    main: float = 0.0
    sprint: float = 0.0


@dataclass
class TeamSelection:
    rider_ids: List[int] = field(default_factory=list)
    constructor_id: Optional[int] = None

    @property
    def is_complete(self):
        return bool(self.rider_ids) and self.constructor_id is not None


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value):
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def coerce_points(value):
    """Turn an admin-entered points value into a float; junk becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    # NaN and infinities are not points either.
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number
