"""
Data access contract for the scoring and pricing core.

``LeagueRepository`` is what the orchestrator needs from storage: full reads
of every collection of one sport, and three batched writes. ``SqlLeagueRepository``
implements it on top of a SQLAlchemy session.
"""
import abc
import json
import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from entities import (
    Constructor,
    Participant,
    Race,
    Rider,
    RoundPoints,
    TeamSnapshot,
)
from pricing import PriceUpdate

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A read or write against the store failed."""


class LeagueRepository(abc.ABC):

    @abc.abstractmethod
    def fetch_riders(self, sport) -> List[Rider]: ...

    @abc.abstractmethod
    def fetch_constructors(self, sport) -> List[Constructor]: ...

    @abc.abstractmethod
    def fetch_races(self, sport) -> List[Race]: ...

    @abc.abstractmethod
    def fetch_participants(self, sport) -> List[Participant]: ...

    @abc.abstractmethod
    def fetch_snapshots(self, sport) -> List[TeamSnapshot]: ...

    @abc.abstractmethod
    def fetch_round_points(self, sport) -> List[RoundPoints]: ...

    @abc.abstractmethod
    def upsert_rider_prices(self, updates: List[PriceUpdate]) -> None: ...

    @abc.abstractmethod
    def upsert_constructor_prices(self, updates: List[PriceUpdate]) -> None: ...

    @abc.abstractmethod
    def mark_races_processed(self, race_ids: List[int]) -> None: ...


def rider_from_row(row: models.Rider) -> Rider:
    return Rider(
        id=row.id,
        name=row.name,
        team=row.team or "",
        constructor_id=row.constructor_id,
        price=row.price,
        initial_price=row.initial_price,
        condition=row.condition,
    )


def constructor_from_row(row: models.Constructor) -> Constructor:
    return Constructor(id=row.id, name=row.name, price=row.price, initial_price=row.initial_price)


def race_from_row(row: models.Race) -> Race:
    return Race(
        id=row.id,
        round=row.round,
        gp_name=row.gp_name,
        race_date=row.race_date,
        prices_adjusted=bool(row.prices_adjusted),
        location=row.location,
    )


def participant_from_row(row: models.Participant) -> Participant:
    return Participant(id=row.id, name=row.name, rider_ids=json.loads(row.rider_ids or "[]"))


def snapshot_from_row(row: models.TeamSnapshot) -> TeamSnapshot:
    return TeamSnapshot(
        id=row.id,
        participant_id=row.participant_id,
        race_id=row.race_id,
        rider_ids=json.loads(row.rider_ids or "[]"),
        constructor_id=row.constructor_id,
        created_at=row.created_at,
    )


def points_from_row(row: models.RiderRoundPoints) -> RoundPoints:
    return RoundPoints(
        race_id=row.race_id,
        rider_id=row.rider_id,
        total=row.points or 0.0,
        main=row.main_points or 0.0,
        sprint=row.sprint_points or 0.0,
    )


class SqlLeagueRepository(LeagueRepository):

    def __init__(self, db: Session):
        self.db = db

    def _fetch(self, query, convert):
        try:
            return [convert(row) for row in query.all()]
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    def fetch_riders(self, sport):
        query = self.db.query(models.Rider).filter(models.Rider.sport == sport).order_by(models.Rider.id)
        return self._fetch(query, rider_from_row)

    def fetch_constructors(self, sport):
        query = (
            self.db.query(models.Constructor)
            .filter(models.Constructor.sport == sport)
            .order_by(models.Constructor.id)
        )
        return self._fetch(query, constructor_from_row)

    def fetch_races(self, sport):
        query = self.db.query(models.Race).filter(models.Race.sport == sport).order_by(models.Race.round)
        return self._fetch(query, race_from_row)

    def fetch_participants(self, sport):
        query = (
            self.db.query(models.Participant)
            .filter(models.Participant.sport == sport)
            .order_by(models.Participant.id)
        )
        return self._fetch(query, participant_from_row)

    def fetch_snapshots(self, sport):
        query = (
            self.db.query(models.TeamSnapshot)
            .join(models.Participant, models.Participant.id == models.TeamSnapshot.participant_id)
            .filter(models.Participant.sport == sport)
            .order_by(models.TeamSnapshot.created_at, models.TeamSnapshot.id)
        )
        return self._fetch(query, snapshot_from_row)

    def fetch_round_points(self, sport):
        query = (
            self.db.query(models.RiderRoundPoints)
            .join(models.Race, models.Race.id == models.RiderRoundPoints.race_id)
            .filter(models.Race.sport == sport)
        )
        return self._fetch(query, points_from_row)

    def _commit(self, what):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Could not persist %s: %s", what, e)
            raise PersistenceError(str(e)) from e

    def _upsert_prices(self, model, updates, what):
        if not updates:
            return
        try:
            rows = {
                row.id: row
                for row in self.db.query(model).filter(model.id.in_([u.id for u in updates]))
            }
            for update in updates:
                row = rows.get(update.id)
                if row is None:
                    raise PersistenceError(f"{what} {update.id} does not exist")
                row.price = update.price
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(str(e)) from e
        except PersistenceError:
            self.db.rollback()
            raise
        self._commit(what)

    def upsert_rider_prices(self, updates):
        self._upsert_prices(models.Rider, updates, "rider")

    def upsert_constructor_prices(self, updates):
        self._upsert_prices(models.Constructor, updates, "constructor")

    def mark_races_processed(self, race_ids):
        if not race_ids:
            return
        try:
            (
                self.db.query(models.Race)
                .filter(models.Race.id.in_(race_ids))
                .update({models.Race.prices_adjusted: True}, synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(str(e)) from e
        self._commit("race flags")
