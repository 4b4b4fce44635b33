"""
Runs the price adjustment for one sport after a data load.

The run only happens in admin context and once the league data is loaded.
Results are persisted in three independent steps (rider prices, constructor
prices, race flags). A failure at any step stops the run before the race
flags are set, so the whole run is redone on the next load.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from entities import utcnow
from pricing import PriceAdjustmentPlan, process_price_adjustments
from repository import LeagueRepository, PersistenceError

logger = logging.getLogger(__name__)

SKIPPED = "skipped"
NOOP = "noop"
APPLIED = "applied"
FAILED = "failed"


@dataclass
class Notification:
    message: str
    level: str = "success"


@dataclass
class AdjustmentOutcome:
    status: str
    plan: Optional[PriceAdjustmentPlan] = None
    notifications: List[Notification] = field(default_factory=list)


def run_price_adjustment(repo: LeagueRepository, sport, is_admin, now=None) -> AdjustmentOutcome:
    if not is_admin:
        return AdjustmentOutcome(SKIPPED)

    try:
        races = repo.fetch_races(sport)
        riders = repo.fetch_riders(sport)
        constructors = repo.fetch_constructors(sport)
        participants = repo.fetch_participants(sport)
        snapshots = repo.fetch_snapshots(sport)
    except PersistenceError as e:
        logger.error("Could not load %s data for price adjustment: %s", sport, e)
        return AdjustmentOutcome(
            FAILED, notifications=[Notification("Could not load league data.", "error")]
        )

    if not races or not riders:
        return AdjustmentOutcome(SKIPPED)

    plan = process_price_adjustments(
        races, riders, constructors, participants, snapshots, now or utcnow()
    )
    if plan is None:
        return AdjustmentOutcome(NOOP)

    outcome = AdjustmentOutcome(APPLIED, plan)
    outcome.notifications.append(Notification(
        f"Detected {len(plan.race_ids)} past race(s). Adjusting prices...", "info"
    ))

    steps = [
        (plan.rider_updates, repo.upsert_rider_prices, "Critical error updating rider prices."),
        (plan.constructor_updates, repo.upsert_constructor_prices, "Critical error updating constructor prices."),
        (plan.race_ids, repo.mark_races_processed, "Error marking races as processed."),
    ]
    for batch, persist, failure in steps:
        if not batch:
            continue
        try:
            persist(batch)
        except PersistenceError as e:
            logger.critical("%s price adjustment aborted (%s): %s", sport, failure, e)
            outcome.status = FAILED
            outcome.notifications.append(Notification(failure, "error"))
            return outcome

    logger.info(
        "%s prices adjusted for races %s: %d rider and %d constructor update(s)",
        sport, plan.race_ids, len(plan.rider_updates), len(plan.constructor_updates),
    )
    outcome.notifications.append(Notification("Prices updated.", "success"))
    return outcome
