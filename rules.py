# Game rules per sport. Prices are integer units; F1 prices are tenths of a
# million (1000 == $100.0M).
from enum import Enum


class Sport(str, Enum):
    MOTOGP = "motogp"
    F1 = "f1"


BUDGET = {
    Sport.MOTOGP: 1000,
    Sport.F1: 1000,
}

RIDER_LIMIT = {
    Sport.MOTOGP: 4,
    Sport.F1: 4,
}

CONSTRUCTOR_LIMIT = 1

# Points for finishing positions, index 0 is P1.
MAIN_RACE_POINTS = {
    Sport.MOTOGP: [25, 20, 16, 13, 11, 10, 9, 8, 7, 6, 5, 4, 3, 2, 1],
    Sport.F1: [25, 18, 15, 12, 10, 8, 6, 4, 2, 1],
}

SPRINT_RACE_POINTS = {
    Sport.MOTOGP: [12, 9, 7, 6, 5, 4, 3, 2, 1],
    Sport.F1: [8, 7, 6, 5, 4, 3, 2, 1],
}

# Popularity tiers: (tier name, strict lower bound in percent, price delta).
# Evaluated top-down, first match wins.
INCREASE_TIERS = [
    ("dominant", 75, 30),
    ("very_popular", 50, 20),
    ("popular", 25, 10),
]
DIFFERENTIAL = "differential"
UNPOPULAR = "unpopular"
FROZEN = "frozen"
NEUTRAL = "neutral"

PRICE_STEP = 10


def points_for_position(sport, position, sprint=False):
    """Official points for a finishing position; 0 outside the points."""
    table = (SPRINT_RACE_POINTS if sprint else MAIN_RACE_POINTS)[Sport(sport)]
    if position is None or position < 1 or position > len(table):
        return 0
    return table[position - 1]


def price_divisor(sport):
    # F1 prices are stored in tenths of a million.
    return 10 if Sport(sport) == Sport.F1 else 1
