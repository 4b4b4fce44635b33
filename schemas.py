from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from entities import as_naive_utc, coerce_points


class ParticipantCreate(BaseModel):
    name: str


class ParticipantUpdate(BaseModel):
    name: str


class TeamSubmission(BaseModel):
    race_id: int
    rider_ids: List[int]
    constructor_id: int


class RiderCreate(BaseModel):
    name: str
    team: str = ""
    constructor_id: Optional[int] = None
    price: int
    initial_price: Optional[int] = None
    condition: Optional[str] = None


class RiderUpdate(BaseModel):
    name: Optional[str] = None
    team: Optional[str] = None
    constructor_id: Optional[int] = None
    price: Optional[int] = None
    condition: Optional[str] = None


class ConstructorCreate(BaseModel):
    name: str
    price: int
    initial_price: Optional[int] = None


class _RaceDates(BaseModel):

    @field_validator("race_date", check_fields=False)
    @classmethod
    def _naive_utc(cls, value):
        return as_naive_utc(value)


class RaceCreate(_RaceDates):
    round: int
    gp_name: str
    location: Optional[str] = None
    race_date: Optional[datetime] = None


class RaceUpdate(_RaceDates):
    # Only corrections; the prices_adjusted flag belongs to the price run.
    gp_name: Optional[str] = None
    location: Optional[str] = None
    race_date: Optional[datetime] = None


class PointsEntry(BaseModel):
    rider_id: int
    main: float = 0.0
    sprint: float = 0.0
    # Finishing positions; when given they override the raw points.
    main_position: Optional[int] = None
    sprint_position: Optional[int] = None

    @field_validator("main", "sprint", mode="before")
    @classmethod
    def _coerce(cls, value):
        return coerce_points(value)

    @field_validator("main_position", "sprint_position", mode="before")
    @classmethod
    def _position(cls, value):
        if value in (None, ""):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None


class PointsSubmission(BaseModel):
    entries: List[PointsEntry]
