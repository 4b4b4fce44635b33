from typing import Iterable, Optional

from entities import TeamSelection, TeamSnapshot


def _latest(snapshots) -> Optional[TeamSnapshot]:
    # Identical timestamps fall back to the higher (later inserted) id.
    return max(snapshots, key=lambda s: (s.created_at, s.id), default=None)


def _selection(snapshot: Optional[TeamSnapshot]) -> TeamSelection:
    if snapshot is None:
        return TeamSelection()
    return TeamSelection(list(snapshot.rider_ids), snapshot.constructor_id)


def resolve_team(participant_id: int, race_id: int, snapshots: Iterable[TeamSnapshot]) -> TeamSelection:
    """Roster in effect for one race: the latest snapshot submitted for it.

    A participant without a snapshot for that exact race has an empty team,
    there is no fallback to earlier races.
    """
    matching = [
        s for s in snapshots
        if s.participant_id == participant_id and s.race_id == race_id
    ]
    return _selection(_latest(matching))


def resolve_latest_team(participant_id: int, snapshots: Iterable[TeamSnapshot], race_ids=None) -> TeamSelection:
    """Most recent roster of a participant regardless of race.

    ``race_ids`` limits the search to one calendar (one sport).
    """
    matching = [
        s for s in snapshots
        if s.participant_id == participant_id
        and (race_ids is None or s.race_id in race_ids)
    ]
    return _selection(_latest(matching))
