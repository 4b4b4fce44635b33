"""
Imports F1 round points from the Jolpica (Ergast compatible) API.

Main race and sprint results are fetched separately; the official points of
each classified driver become that rider's main/sprint points for the round.
Drivers are matched to riders by full name.
"""
import logging
from typing import List

import requests

from config import F1_SEASON, JOLPICA_BASE_URL
from entities import RoundPoints, coerce_points

logger = logging.getLogger(__name__)

TIMEOUT = 10


class ResultsUnavailable(Exception):
    """The results API failed or has no results for the round yet."""


def _driver_name(result):
    driver = result.get("Driver", {})
    return f"{driver.get('givenName', '')} {driver.get('familyName', '')}".strip()


def _fetch_races(http, url):
    try:
        resp = http.get(url, timeout=TIMEOUT)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise ResultsUnavailable(f"Error fetching {url}: {e}") from e
    return data.get("MRData", {}).get("RaceTable", {}).get("Races", [])


def fetch_driver_points(round_number, season=F1_SEASON, http=requests):
    """Return ``({driver name: main points}, {driver name: sprint points})``."""
    base = f"{JOLPICA_BASE_URL}/{season}/{round_number}"

    races = _fetch_races(http, f"{base}/results.json")
    if not races:
        raise ResultsUnavailable(f"No race data available for round {round_number}.")
    main = {
        _driver_name(r): coerce_points(r.get("points"))
        for r in races[0].get("Results", [])
    }

    # Most rounds have no sprint; a failing sprint lookup is not fatal.
    sprint = {}
    try:
        sprint_races = _fetch_races(http, f"{base}/sprint.json")
    except ResultsUnavailable as e:
        logger.warning("Sprint results for round %s unavailable: %s", round_number, e)
        sprint_races = []
    if sprint_races:
        sprint = {
            _driver_name(r): coerce_points(r.get("points"))
            for r in sprint_races[0].get("SprintResults", [])
        }
    return main, sprint


def fetch_round_points(race_id, round_number, riders, season=F1_SEASON, http=requests) -> List[RoundPoints]:
    main, sprint = fetch_driver_points(round_number, season=season, http=http)
    by_name = {r.name.casefold(): r for r in riders}

    rows = {}
    for name in list(main) + [n for n in sprint if n not in main]:
        rider = by_name.get(name.casefold())
        if rider is None:
            logger.warning("No rider matches driver %r from round %s", name, round_number)
            continue
        main_pts = main.get(name, 0.0)
        sprint_pts = sprint.get(name, 0.0)
        rows[rider.id] = RoundPoints(
            race_id=race_id,
            rider_id=rider.id,
            total=main_pts + sprint_pts,
            main=main_pts,
            sprint=sprint_pts,
        )
    return list(rows.values())
