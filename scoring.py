"""
Score calculation.

A participant's race score is the sum of the raw points of the riders in the
roster resolved for that race, plus the constructor score: the average of the
two best race totals among the constructor's riders, ``(top1 + top2) / 2``.
A missing second rider counts as zero, so a lone scorer gives ``top1 / 2``.

The general (season) score is the sum of every race scored independently with
the roster that was in effect for that race.

Nothing here raises on stale references: riders or constructors missing from
the catalog simply contribute zero.
"""
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

import rules
from entities import Constructor, Race, Rider, RoundPoints
from roster import resolve_latest_team, resolve_team

GENERAL = "general"

View = Union[int, str]
RiderPoints = Dict[int, Dict[int, RoundPoints]]


@dataclass
class RiderScore:
    rider: Rider
    points: float
    main_race_points: float
    sprint_race_points: float


@dataclass
class ConstructorScore:
    constructor: Optional[Constructor]
    points: float
    calculation: str
    contributing_riders: List[RiderScore] = field(default_factory=list)


@dataclass
class ScoreBreakdown:
    rider_scores: List[RiderScore]
    constructor_score: ConstructorScore
    total_score: float

    @property
    def rounded_total(self):
        return display_round(self.total_score)


def display_round(value):
    """Round half up to whole points, the way scores are shown and ranked."""
    return int(math.floor(value + 0.5))


def _format_points(value):
    return f"{value:g}"


def _surname(rider):
    return rider.name.split(" ")[-1] if rider.name else ""


def points_by_race(rows: Iterable[RoundPoints]) -> RiderPoints:
    grouped: RiderPoints = defaultdict(dict)
    for row in rows:
        grouped[row.race_id][row.rider_id] = row
    return dict(grouped)


def _round_points(race_points, rider_id) -> RoundPoints:
    found = race_points.get(rider_id)
    if found is None:
        return RoundPoints(race_id=0, rider_id=rider_id)
    return found


# Constructor affiliation is resolved in two stages: riders carrying a
# constructor_id are matched on it, riders without one fall back to the
# legacy team-name match.

def riders_by_constructor_id(constructor: Constructor, riders: Iterable[Rider]) -> List[Rider]:
    return [r for r in riders if r.constructor_id and r.constructor_id == constructor.id]


def riders_by_team_name(constructor: Constructor, riders: Iterable[Rider]) -> List[Rider]:
    return [r for r in riders if not r.constructor_id and r.team and r.team == constructor.name]


def affiliated_riders(constructor: Constructor, riders: Iterable[Rider]) -> List[Rider]:
    riders = list(riders)
    matched = {r.id for r in riders_by_constructor_id(constructor, riders)}
    matched.update(r.id for r in riders_by_team_name(constructor, riders))
    return [r for r in riders if r.id in matched]


def constructor_race_score(constructor: Optional[Constructor], riders: Iterable[Rider], race_points) -> ConstructorScore:
    if constructor is None:
        return ConstructorScore(None, 0.0, "No constructor selected")

    team = affiliated_riders(constructor, riders)
    if not team:
        return ConstructorScore(constructor, 0.0, "No riders affiliated")

    ranked = []
    for rider in team:
        row = _round_points(race_points, rider.id)
        ranked.append(RiderScore(rider, row.total, row.main, row.sprint))
    ranked.sort(key=lambda rs: rs.points, reverse=True)
    contributing = ranked[:2]

    top1 = contributing[0].points
    top2 = contributing[1].points if len(contributing) > 1 else 0.0
    points = (top1 + top2) / 2

    if top1 > 0 and top2 > 0:
        calculation = "({}: {} + {}: {}) / 2".format(
            _surname(contributing[0].rider), _format_points(top1),
            _surname(contributing[1].rider), _format_points(top2),
        )
    elif top1 > 0:
        calculation = "({}: {}) / 2".format(_surname(contributing[0].rider), _format_points(top1))
    else:
        calculation = "Riders did not score"

    return ConstructorScore(constructor, points, calculation, contributing)


def score_breakdown(
    participant_id: int,
    race_id: int,
    snapshots,
    rider_points: RiderPoints,
    riders: List[Rider],
    constructors: List[Constructor],
) -> ScoreBreakdown:
    team = resolve_team(participant_id, race_id, snapshots)
    race_points = rider_points.get(race_id, {})
    riders_by_id = {r.id: r for r in riders}
    constructors_by_id = {c.id: c for c in constructors}

    rider_scores = []
    for rider_id in team.rider_ids:
        rider = riders_by_id.get(rider_id)
        if rider is None:
            continue
        row = _round_points(race_points, rider_id)
        rider_scores.append(RiderScore(rider, row.total, row.main, row.sprint))

    constructor = None
    if team.constructor_id is not None:
        constructor = constructors_by_id.get(team.constructor_id)
    constructor_score = constructor_race_score(constructor, riders, race_points)

    total = sum(rs.points for rs in rider_scores) + constructor_score.points
    return ScoreBreakdown(rider_scores, constructor_score, total)


def calculate_score(
    participant_id: int,
    view: View,
    races: List[Race],
    snapshots,
    rider_points: RiderPoints,
    riders: List[Rider],
    constructors: List[Constructor],
) -> float:
    def race_score(race):
        return score_breakdown(
            participant_id, race.id, snapshots, rider_points, riders, constructors
        ).total_score

    if view == GENERAL:
        return sum(race_score(race) for race in races)
    race = next((r for r in races if r.id == view), None)
    return race_score(race) if race else 0.0


def _races_in_view(view, races):
    if view == GENERAL:
        return list(races)
    return [r for r in races if r.id == view]


def _race_sort_key(race):
    return (race.race_date is None, race.race_date or race.round, race.round)


def _race_sort_key_desc(race):
    # Races without a date rank below dated ones.
    return (race.race_date is not None, race.race_date or race.round, race.round)


def leaderboard(view, participants, races, snapshots, rider_points, riders, constructors):
    """Participants ranked by score for a race or for the whole season."""
    rows = []
    for participant in participants:
        score = calculate_score(
            participant.id, view, races, snapshots, rider_points, riders, constructors
        )
        rows.append({
            "participant_id": participant.id,
            "name": participant.name,
            "score": score,
            "rounded_score": display_round(score),
        })
    rows.sort(key=lambda row: (-row["score"], row["name"]))
    for rank, row in enumerate(rows, start=1):
        row["rank"] = rank
    return rows


def _latest_teams(participants, snapshots, races):
    race_ids = {r.id for r in races}
    return [resolve_latest_team(p.id, snapshots, race_ids) for p in participants]


def rider_standings(sport, view, riders, participants, races, snapshots, rider_points):
    race_ids = {r.id for r in _races_in_view(view, races)}
    scores = defaultdict(float)
    for race_id, race_points in rider_points.items():
        if race_id not in race_ids:
            continue
        for rider_id, row in race_points.items():
            scores[rider_id] += row.total

    teams = [t for t in _latest_teams(participants, snapshots, races) if t.rider_ids]
    counts = defaultdict(int)
    for team in teams:
        for rider_id in team.rider_ids:
            counts[rider_id] += 1

    divisor = rules.price_divisor(sport)
    standings = []
    for rider in riders:
        score = scores.get(rider.id, 0.0)
        price = rider.price / divisor
        standings.append({
            "rider_id": rider.id,
            "name": rider.name,
            "team": rider.team,
            "price": rider.price,
            "score": score,
            "selection_percent": counts[rider.id] / len(teams) * 100 if teams else 0.0,
            "value": score / price if price > 0 else 0.0,
        })
    standings.sort(key=lambda row: (-row["score"], row["name"]))
    return standings


def constructor_standings(sport, view, constructors, riders, participants, races, snapshots, rider_points,
                          constructor_prices=None):
    """``constructor_prices`` maps constructor id to the price participants pay; stored prices otherwise."""
    constructor_prices = constructor_prices or {}
    in_view = sorted(_races_in_view(view, races), key=_race_sort_key)

    teams = [
        t for t in _latest_teams(participants, snapshots, races)
        if t.constructor_id is not None
    ]
    counts = defaultdict(int)
    for team in teams:
        counts[team.constructor_id] += 1

    divisor = rules.price_divisor(sport)
    standings = []
    for constructor in constructors:
        score = 0.0
        by_race = []
        for race in in_view:
            race_points = rider_points.get(race.id)
            if not race_points:
                continue
            result = constructor_race_score(constructor, riders, race_points)
            score += result.points
            if result.points > 0:
                by_race.append({
                    "race_id": race.id,
                    "gp_name": race.gp_name,
                    "points": result.points,
                    "calculation": result.calculation,
                })
        paid = constructor_prices.get(constructor.id, constructor.price)
        price = paid / divisor
        standings.append({
            "constructor_id": constructor.id,
            "name": constructor.name,
            "price": constructor.price,
            "display_price": paid,
            "score": score,
            "selection_percent": counts[constructor.id] / len(teams) * 100 if teams else 0.0,
            "value": score / price if price > 0 else 0.0,
            "races": by_race,
        })
    standings.sort(key=lambda row: (-row["score"], row["name"]))
    return standings


def dream_team(sport, riders, constructors, races, rider_points, constructor_prices=None):
    """Best affordable team for the most recent race with points.

    Greedy: for every constructor, fill the roster with the best-scoring
    riders that still fit in the budget, and keep the best complete team.
    Constructors cost ``constructor_prices[id]`` when given, so the result
    passes the same budget check as a submitted team.
    """
    constructor_prices = constructor_prices or {}

    def constructor_cost(constructor):
        return constructor_prices.get(constructor.id, constructor.price)

    scored = [r for r in races if rider_points.get(r.id)]
    if not scored:
        return None
    race = max(scored, key=_race_sort_key_desc)
    race_points = rider_points[race.id]
    budget = rules.BUDGET[rules.Sport(sport)]
    limit = rules.RIDER_LIMIT[rules.Sport(sport)]

    def rider_total(rider):
        return _round_points(race_points, rider.id).total

    by_points = sorted(riders, key=rider_total, reverse=True)
    candidates = sorted(
        ((c, constructor_race_score(c, riders, race_points).points) for c in constructors),
        key=lambda pair: pair[1],
        reverse=True,
    )

    best = None
    for constructor, constructor_points in candidates:
        remaining = budget - constructor_cost(constructor)
        picked = []
        for rider in by_points:
            if len(picked) < limit and remaining >= rider.price:
                picked.append(rider)
                remaining -= rider.price
        if len(picked) != limit:
            continue
        total = constructor_points + sum(rider_total(r) for r in picked)
        if best is None or total > best["score"]:
            best = {"riders": picked, "constructor": constructor, "score": total}

    if best is None:
        return None
    return {
        "race": race,
        "riders": best["riders"],
        "constructor": best["constructor"],
        "score": best["score"],
        "rounded_score": display_round(best["score"]),
        "cost": sum(r.price for r in best["riders"]) + constructor_cost(best["constructor"]),
    }