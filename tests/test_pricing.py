import pytest

import rules
from entities import Constructor, Participant, Rider
from pricing import (
    classify,
    effective_constructor_prices,
    popularity,
    price_movers,
    process_price_adjustments,
    redistribute,
    unprocessed_past_races,
)
from tests.factories import NOW, race, snapshot


def build_riders(overrides=None):
    overrides = overrides or {}
    riders = [
        Rider(1, "Rider One", price=200),
        Rider(2, "Rider Two", price=180),
        Rider(3, "Rider Three", price=120),
        Rider(4, "Rider Four", price=110),
        Rider(5, "Rider Five", price=150),
        Rider(6, "Rider Six", price=100),
    ]
    for rider in riders:
        for key, value in overrides.get(rider.id, {}).items():
            setattr(rider, key, value)
    return riders


CONSTRUCTORS = [
    Constructor(1, "Team One", price=300),
    Constructor(2, "Team Two", price=250),
    Constructor(3, "Team Three", price=200),
]

PARTICIPANTS = [Participant(i, f"P{i}") for i in range(1, 5)]

# Rider 1: 4/4, rider 2: 2/4, riders 3 and 4: 1/4, riders 5 and 6 unpicked.
# Constructor 1: 3/4, constructor 2: 1/4, constructor 3 unpicked.
SNAPSHOTS = [
    snapshot(1, 1, 1, [1, 2], 1),
    snapshot(2, 2, 1, [1, 2], 1),
    snapshot(3, 3, 1, [1, 3], 1),
    snapshot(4, 4, 1, [1, 4], 2),
]


def run(races, riders=None, constructors=CONSTRUCTORS, participants=PARTICIPANTS, snapshots=SNAPSHOTS):
    return process_price_adjustments(
        races, riders or build_riders(), constructors, participants, snapshots, now=NOW
    )


def prices(updates):
    return {u.id: u.price for u in updates}


@pytest.mark.parametrize("percent, tier", [
    (100, "dominant"),
    (75.01, "dominant"),
    (75, "very_popular"),
    (50, "popular"),
    (50.5, "very_popular"),
    (25.5, "popular"),
    (25, rules.DIFFERENTIAL),
    (0.1, rules.DIFFERENTIAL),
    (0, rules.UNPOPULAR),
])
def test_classify_thresholds_are_strict(percent, tier):
    assert classify(percent) == tier


def test_constructors_have_no_differential_tier():
    assert classify(10, differential=False) == rules.NEUTRAL
    assert classify(0, differential=False) == rules.UNPOPULAR


def test_popularity_without_participants_is_zero():
    assert popularity(3, 0) == 0
    assert popularity(3, 4) == 75


def test_three_of_four_is_very_popular_not_dominant():
    snapshots = [snapshot(i, i, 1, [1] if i < 4 else [2], 1) for i in range(1, 5)]

    plan = run([race(1, days_ago=3)], snapshots=snapshots)

    assert plan.reports[0].rider_tiers[1] == "very_popular"
    assert plan.reports[0].rider_deltas[1] == 20
    assert prices(plan.rider_updates)[1] == 220


def test_redistribution_stops_below_one_step():
    deltas = {}

    taken = redistribute([2, 1], {1: 100, 2: 80}, 25, deltas)

    assert taken == 20
    assert deltas == {1: -10, 2: -10}


def test_redistribution_wraps_round_robin_from_most_expensive():
    deltas = {}

    taken = redistribute([1, 2, 3], {1: 50, 2: 90, 3: 70}, 40, deltas)

    assert taken == 40
    assert deltas == {2: -20, 3: -10, 1: -10}


def test_redistribution_with_empty_pool_takes_nothing():
    deltas = {}

    assert redistribute([], {}, 40, deltas) == 0
    assert deltas == {}


def test_single_race_adjustment():
    plan = run([race(1, days_ago=3)])
    report = plan.reports[0]

    assert report.qualifying_participants == 4
    assert report.rider_tiers == {
        1: "dominant", 2: "popular", 3: rules.DIFFERENTIAL,
        4: rules.DIFFERENTIAL, 5: rules.UNPOPULAR, 6: rules.UNPOPULAR,
    }
    assert report.rider_increase == 40
    assert report.rider_redistributed == 40
    assert prices(plan.rider_updates) == {1: 230, 2: 190, 5: 130, 6: 80}

    assert report.constructor_tiers == {1: "very_popular", 2: rules.NEUTRAL, 3: rules.UNPOPULAR}
    assert prices(plan.constructor_updates) == {1: 320, 3: 180}
    assert plan.race_ids == [1]


def test_increase_minus_redistributed_is_below_one_step():
    plan = run([race(1, days_ago=3)])

    for report in plan.reports:
        increases = sum(d for d in report.rider_deltas.values() if d > 0)
        decreases = -sum(d for d in report.rider_deltas.values() if d < 0)
        assert increases == report.rider_increase
        assert decreases == report.rider_redistributed
        assert 0 <= increases - decreases < rules.PRICE_STEP


def test_riders_with_condition_never_move():
    riders = build_riders({1: {"condition": "injured"}, 5: {"condition": "injured"}})

    plan = run([race(1, days_ago=3)], riders=riders)
    report = plan.reports[0]

    assert report.rider_tiers[1] == rules.FROZEN
    assert report.rider_tiers[5] == rules.FROZEN
    assert 1 not in report.rider_deltas
    assert 5 not in report.rider_deltas
    # Only rider 2 goes up; rider 6 is the only unpopular candidate left.
    assert prices(plan.rider_updates) == {2: 190, 6: 90}


def test_differential_riders_absorb_when_nobody_is_unpopular():
    riders = [r for r in build_riders() if r.id not in (5, 6)]

    plan = run([race(1, days_ago=3)], riders=riders)

    # +40 taken from riders 3 (120) and 4 (110), most expensive first.
    assert prices(plan.rider_updates) == {1: 230, 2: 190, 3: 100, 4: 90}


def test_constructor_increase_unfunded_without_unpopular_constructors():
    constructors = CONSTRUCTORS[:2]

    plan = run([race(1, days_ago=3)], constructors=constructors)

    assert plan.reports[0].constructor_redistributed == 0
    # Constructor 2 sits at 25% and is not a decrease candidate.
    assert prices(plan.constructor_updates) == {1: 320}


def test_prices_never_go_negative():
    riders = [Rider(1, "Star", price=100), Rider(2, "Cheap", price=5)]
    snapshots = [snapshot(1, 1, 1, [1], 1)]

    plan = run([race(1, days_ago=3)], riders=riders, participants=PARTICIPANTS[:1], snapshots=snapshots)

    assert prices(plan.rider_updates) == {1: 130, 2: 0}


def test_incomplete_teams_do_not_count():
    snapshots = [
        snapshot(1, 1, 1, [1], 1),
        snapshot(2, 2, 1, [2], None),
        snapshot(3, 3, 1, [], 2),
    ]

    plan = run([race(1, days_ago=3)], snapshots=snapshots)
    report = plan.reports[0]

    assert report.qualifying_participants == 1
    assert report.rider_tiers[1] == "dominant"
    assert report.rider_tiers[2] == rules.UNPOPULAR
    assert report.constructor_tiers[2] == rules.UNPOPULAR


def test_race_without_qualifying_teams_changes_nothing():
    plan = run([race(1, days_ago=3)], snapshots=[])

    assert plan.rider_updates == []
    assert plan.constructor_updates == []
    assert plan.race_ids == [1]


def test_races_compound_in_date_order():
    riders = [Rider(1, "Pick", price=100), Rider(2, "A", price=150), Rider(3, "B", price=145)]
    constructors = [Constructor(1, "Only", price=100)]
    participants = [Participant(1, "P1")]
    snapshots = [snapshot(1, 1, 1, [1], 1), snapshot(2, 1, 2, [1], 1)]
    races = [race(2, days_ago=2), race(1, days_ago=9)]

    plan = process_price_adjustments(races, riders, constructors, participants, snapshots, now=NOW)

    assert plan.race_ids == [1, 2]
    # Race 1: A 150 -> 130, B 145 -> 135. Race 2 starts from B being dearer.
    assert prices(plan.rider_updates) == {1: 160, 2: 120, 3: 115}
    # No unpicked constructor to fund the increase.
    assert prices(plan.constructor_updates) == {1: 160}


def test_only_changed_entities_are_returned():
    plan = run([race(1, days_ago=3)])

    assert {u.id for u in plan.rider_updates} == {1, 2, 5, 6}
    for update in plan.rider_updates:
        assert update.change != 0


def test_processed_and_future_races_are_skipped():
    races = [
        race(1, days_ago=10, adjusted=True),
        race(2, days_ago=-3),
        race(3),
    ]

    assert unprocessed_past_races(races, NOW) == []
    assert run(races) is None


def test_second_run_after_flagging_is_a_noop():
    races = [race(1, days_ago=3)]
    plan = run(races)
    for r in races:
        if r.id in plan.race_ids:
            r.prices_adjusted = True

    assert run(races) is None


def test_effective_constructor_price_averages_two_dearest_riders():
    riders = [
        Rider(1, "A", constructor_id=1, price=200, initial_price=150),
        Rider(2, "B", constructor_id=1, price=100, initial_price=170),
        Rider(3, "C", constructor_id=1, price=50, initial_price=10),
        Rider(4, "D", team="Team Two", price=90, initial_price=80),
    ]

    derived = effective_constructor_prices(CONSTRUCTORS, riders)

    assert derived[1] == (150, 160)
    assert derived[2] == (90, 80)
    # No riders: stored price.
    assert derived[3] == (200, 0)


def test_effective_price_does_not_touch_stored_price():
    riders = [Rider(1, "A", constructor_id=1, price=400)]
    constructors = [Constructor(1, "Team One", price=300, initial_price=300)]

    effective_constructor_prices(constructors, riders)

    assert constructors[0].price == 300


def test_price_movers():
    riders = [
        Rider(1, "Up", price=130, initial_price=100),
        Rider(2, "Down", price=80, initial_price=100),
        Rider(3, "Flat", price=100, initial_price=100),
    ]
    constructors = [Constructor(1, "Team Up", price=220, initial_price=200)]

    movers = price_movers(riders, constructors)

    assert [m["name"] for m in movers["risers"]] == ["Up", "Team Up"]
    assert [m["name"] for m in movers["fallers"]] == ["Down"]
