"""
Market prices.

After a race closes every rider and constructor is bucketed by how many of the
qualifying participants picked it for that race:

    > 75%   dominant        +30
    > 50%   very popular    +20
    > 25%   popular         +10
    >  0%   differential    no change (riders only, fallback decrease pool)
    == 0%   unpopular       decrease pool

The sum of the increases is taken back from the decrease pool, 10 units at a
time, round-robin from the most expensive candidate down, while at least 10
remains to be taken. Riders with an active condition never move.

Unprocessed races are handled oldest first and prices compound from one race
to the next. Only the final difference against the stored price is returned
for persisting.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import rules
from entities import Constructor, Participant, Race, Rider, utcnow
from roster import resolve_team
from scoring import affiliated_riders

logger = logging.getLogger(__name__)


@dataclass
class PriceUpdate:
    id: int
    name: str
    old_price: int
    price: int

    @property
    def change(self):
        return self.price - self.old_price


@dataclass
class RaceAdjustmentReport:
    race_id: int
    qualifying_participants: int
    rider_tiers: Dict[int, str] = field(default_factory=dict)
    rider_deltas: Dict[int, int] = field(default_factory=dict)
    constructor_tiers: Dict[int, str] = field(default_factory=dict)
    constructor_deltas: Dict[int, int] = field(default_factory=dict)
    rider_increase: int = 0
    rider_redistributed: int = 0
    constructor_increase: int = 0
    constructor_redistributed: int = 0


@dataclass
class PriceAdjustmentPlan:
    rider_updates: List[PriceUpdate]
    constructor_updates: List[PriceUpdate]
    race_ids: List[int]
    reports: List[RaceAdjustmentReport]


def unprocessed_past_races(races: List[Race], now) -> List[Race]:
    pending = [
        r for r in races
        if r.race_date is not None and r.race_date < now and not r.prices_adjusted
    ]
    return sorted(pending, key=lambda r: (r.race_date, r.round, r.id))


def popularity(count, total):
    return count / total * 100 if total > 0 else 0.0


def classify(percent, differential=True):
    for tier, threshold, _ in rules.INCREASE_TIERS:
        if percent > threshold:
            return tier
    if percent > 0:
        return rules.DIFFERENTIAL if differential else rules.NEUTRAL
    return rules.UNPOPULAR


TIER_DELTAS = {tier: delta for tier, _, delta in rules.INCREASE_TIERS}


def redistribute(candidates: List[int], prices: Dict[int, int], amount: int, deltas: Dict[int, int]) -> int:
    """Take ``amount`` back from ``candidates`` in PRICE_STEP slices.

    Most expensive first, wrapping around. Stops once less than one step is
    left, so the taken total is a multiple of the step and may fall short of
    ``amount`` by less than one step. Returns the total taken.
    """
    if not candidates:
        return 0
    ordered = sorted(candidates, key=lambda entity_id: prices.get(entity_id, 0), reverse=True)
    remaining = amount
    taken = 0
    index = 0
    while remaining >= rules.PRICE_STEP:
        entity_id = ordered[index]
        deltas[entity_id] = deltas.get(entity_id, 0) - rules.PRICE_STEP
        remaining -= rules.PRICE_STEP
        taken += rules.PRICE_STEP
        index = (index + 1) % len(ordered)
    return taken


def _apply(prices, deltas):
    for entity_id, delta in deltas.items():
        prices[entity_id] = max(0, prices.get(entity_id, 0) + delta)


def adjust_race(
    race: Race,
    riders: List[Rider],
    constructors: List[Constructor],
    participants: List[Participant],
    snapshots,
    rider_prices: Dict[int, int],
    constructor_prices: Dict[int, int],
) -> RaceAdjustmentReport:
    """Move the running price maps for one race. Mutates both maps."""
    teams = [resolve_team(p.id, race.id, snapshots) for p in participants]
    teams = [t for t in teams if t.is_complete]
    total = len(teams)
    report = RaceAdjustmentReport(race_id=race.id, qualifying_participants=total)
    if total == 0:
        return report

    rider_counts = Counter(rider_id for t in teams for rider_id in t.rider_ids)
    constructor_counts = Counter(t.constructor_id for t in teams)

    rider_deltas = {}
    differential, unpopular = [], []
    for rider in riders:
        if rider.condition:
            report.rider_tiers[rider.id] = rules.FROZEN
            continue
        tier = classify(popularity(rider_counts[rider.id], total))
        report.rider_tiers[rider.id] = tier
        if tier in TIER_DELTAS:
            rider_deltas[rider.id] = TIER_DELTAS[tier]
            report.rider_increase += TIER_DELTAS[tier]
        elif tier == rules.DIFFERENTIAL:
            differential.append(rider.id)
        else:
            unpopular.append(rider.id)
    report.rider_redistributed = redistribute(
        unpopular or differential, rider_prices, report.rider_increase, rider_deltas
    )

    constructor_deltas = {}
    constructor_pool = []
    for constructor in constructors:
        tier = classify(popularity(constructor_counts[constructor.id], total), differential=False)
        report.constructor_tiers[constructor.id] = tier
        if tier in TIER_DELTAS:
            constructor_deltas[constructor.id] = TIER_DELTAS[tier]
            report.constructor_increase += TIER_DELTAS[tier]
        elif tier == rules.UNPOPULAR:
            constructor_pool.append(constructor.id)
    report.constructor_redistributed = redistribute(
        constructor_pool, constructor_prices, report.constructor_increase, constructor_deltas
    )

    _apply(rider_prices, rider_deltas)
    _apply(constructor_prices, constructor_deltas)
    report.rider_deltas = rider_deltas
    report.constructor_deltas = constructor_deltas
    return report


def _changed(entities, prices):
    return [
        PriceUpdate(e.id, e.name, e.price, prices[e.id])
        for e in entities
        if prices[e.id] != e.price
    ]


def process_price_adjustments(
    races: List[Race],
    riders: List[Rider],
    constructors: List[Constructor],
    participants: List[Participant],
    snapshots,
    now=None,
) -> Optional[PriceAdjustmentPlan]:
    """Price changes for every closed race not yet adjusted, or None."""
    pending = unprocessed_past_races(races, now or utcnow())
    if not pending:
        return None

    riders = sorted(riders, key=lambda r: r.id)
    constructors = sorted(constructors, key=lambda c: c.id)
    rider_prices = {r.id: r.price for r in riders}
    constructor_prices = {c.id: c.price for c in constructors}

    reports = []
    for race in pending:
        report = adjust_race(
            race, riders, constructors, participants, snapshots, rider_prices, constructor_prices
        )
        logger.info(
            "Race %s (%s): %d qualifying teams, riders +%d/-%d, constructors +%d/-%d",
            race.id, race.gp_name, report.qualifying_participants,
            report.rider_increase, report.rider_redistributed,
            report.constructor_increase, report.constructor_redistributed,
        )
        reports.append(report)

    return PriceAdjustmentPlan(
        rider_updates=_changed(riders, rider_prices),
        constructor_updates=_changed(constructors, constructor_prices),
        race_ids=[r.id for r in pending],
        reports=reports,
    )


def _top_two_average(values, fallback):
    top = sorted(values, reverse=True)[:2]
    if not top:
        return fallback
    return sum(top) / len(top)


def effective_constructor_prices(constructors: List[Constructor], riders: List[Rider]):
    """Displayed constructor prices, derived from the two dearest riders.

    Returns ``{constructor_id: (price, initial_price)}``. This is a display
    and budget valuation only; the stored constructor price stays untouched.
    """
    derived = {}
    for constructor in constructors:
        team = affiliated_riders(constructor, riders)
        derived[constructor.id] = (
            _top_two_average([r.price for r in team], constructor.price),
            _top_two_average([r.initial_price for r in team], constructor.initial_price),
        )
    return derived


def price_movers(riders: List[Rider], constructors: List[Constructor], limit=3):
    items = [
        {"type": "rider", "id": r.id, "name": r.name, "change": r.price - r.initial_price}
        for r in riders
    ] + [
        {"type": "constructor", "id": c.id, "name": c.name, "change": c.price - c.initial_price}
        for c in constructors
    ]
    changed = [item for item in items if item["change"] != 0]
    risers = sorted((i for i in changed if i["change"] > 0), key=lambda i: -i["change"])[:limit]
    fallers = sorted((i for i in changed if i["change"] < 0), key=lambda i: i["change"])[:limit]
    return {"risers": risers, "fallers": fallers}
