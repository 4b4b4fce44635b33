# main.py
import json
import logging
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import config
import models
import rules
from database import Base, SessionLocal, engine
from entities import RoundPoints, utcnow
from orchestrator import run_price_adjustment
from pricing import effective_constructor_prices, price_movers
from repository import (
    PersistenceError,
    SqlLeagueRepository,
    race_from_row,
    rider_from_row,
)
from results_import import ResultsUnavailable, fetch_round_points
from roster import resolve_latest_team, resolve_team
from rules import Sport
from schemas import (
    ConstructorCreate,
    ParticipantCreate,
    ParticipantUpdate,
    PointsSubmission,
    RaceCreate,
    RaceUpdate,
    RiderCreate,
    RiderUpdate,
    TeamSubmission,
)
from scoring import (
    GENERAL,
    calculate_score,
    constructor_standings,
    display_round,
    dream_team,
    leaderboard,
    points_by_race,
    rider_standings,
    score_breakdown,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables if they do not exist.
Base.metadata.create_all(bind=engine)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency to provide a database session.
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_admin(x_admin_token: Optional[str] = Header(None)) -> bool:
    return bool(config.ADMIN_TOKEN) and x_admin_token == config.ADMIN_TOKEN


def require_admin(admin: bool = Depends(is_admin)):
    if not admin:
        raise HTTPException(401, "Admin token required.")


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def load_league(db: Session, sport: Sport):
    repo = SqlLeagueRepository(db)
    try:
        return {
            "riders": repo.fetch_riders(sport.value),
            "constructors": repo.fetch_constructors(sport.value),
            "races": repo.fetch_races(sport.value),
            "participants": repo.fetch_participants(sport.value),
            "snapshots": repo.fetch_snapshots(sport.value),
            "rider_points": points_by_race(repo.fetch_round_points(sport.value)),
        }
    except PersistenceError as e:
        logger.error("Error loading %s league: %s", sport.value, e)
        raise HTTPException(503, "Could not load league data.")


def display_prices(data):
    """Constructor prices as shown to participants and charged against the budget."""
    derived = effective_constructor_prices(data["constructors"], data["riders"])
    return {constructor_id: price for constructor_id, (price, _) in derived.items()}


def parse_view(view: str):
    if view == GENERAL:
        return GENERAL
    try:
        return int(view)
    except ValueError:
        raise HTTPException(400, "View must be 'general' or a race id.")


def get_row(db: Session, model, sport: Sport, row_id: int, label: str):
    row = db.query(model).filter(model.id == row_id, model.sport == sport.value).first()
    if not row:
        raise HTTPException(404, f"{label} not found.")
    return row


def commit(db: Session, conflict: str):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(400, conflict)


def serialize_breakdown(breakdown):
    cs = breakdown.constructor_score
    return {
        "rider_scores": [
            {
                "rider_id": rs.rider.id,
                "name": rs.rider.name,
                "points": rs.points,
                "main_race_points": rs.main_race_points,
                "sprint_race_points": rs.sprint_race_points,
            }
            for rs in breakdown.rider_scores
        ],
        "constructor_score": {
            "constructor_id": cs.constructor.id if cs.constructor else None,
            "name": cs.constructor.name if cs.constructor else None,
            "points": cs.points,
            "calculation": cs.calculation,
            "contributing_riders": [
                {"rider_id": rs.rider.id, "name": rs.rider.name, "points": rs.points}
                for rs in cs.contributing_riders
            ],
        },
        "total_score": breakdown.total_score,
        "rounded_total": breakdown.rounded_total,
    }


def upsert_points(db: Session, race_id: int, rows):
    existing = {
        p.rider_id: p
        for p in db.query(models.RiderRoundPoints).filter(models.RiderRoundPoints.race_id == race_id)
    }
    for row in rows:
        record = existing.get(row.rider_id)
        if record is None:
            record = models.RiderRoundPoints(race_id=race_id, rider_id=row.rider_id)
            db.add(record)
        record.points = row.total
        record.main_points = row.main
        record.sprint_points = row.sprint
    commit(db, "Could not save rider points.")


# ------------------------------------------------------------------------------
# Public endpoints
# ------------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Fantasy league scoring and market backend."}


@app.get("/{sport}/league")
def get_league(sport: Sport, db: Session = Depends(get_db), admin: bool = Depends(is_admin)):
    """
    Load every collection of a sport. In admin mode this is also the moment
    the price adjustment for closed races runs.
    """
    outcome = run_price_adjustment(SqlLeagueRepository(db), sport.value, admin)
    data = load_league(db, sport)
    derived = effective_constructor_prices(data["constructors"], data["riders"])

    constructors = []
    for c in data["constructors"]:
        item = asdict(c)
        item["display_price"], item["display_initial_price"] = derived[c.id]
        constructors.append(item)

    return {
        "riders": [asdict(r) for r in data["riders"]],
        "constructors": constructors,
        "races": [asdict(r) for r in data["races"]],
        "participants": [asdict(p) for p in data["participants"]],
        "team_snapshots": [asdict(s) for s in data["snapshots"]],
        "rider_points": {
            race_id: {rider_id: asdict(p) for rider_id, p in race_points.items()}
            for race_id, race_points in data["rider_points"].items()
        },
        "price_adjustment": outcome.status,
        "notifications": [asdict(n) for n in outcome.notifications],
    }


@app.post("/{sport}/participants")
def register_participant(sport: Sport, request: ParticipantCreate, db: Session = Depends(get_db)):
    name = request.name.strip()
    if not name:
        raise HTTPException(400, "Participant name cannot be empty.")
    exists = (
        db.query(models.Participant)
        .filter(models.Participant.sport == sport.value, models.Participant.name == name)
        .first()
    )
    if exists:
        raise HTTPException(400, "Participant name already exists.")
    participant = models.Participant(sport=sport.value, name=name, rider_ids=json.dumps([]))
    db.add(participant)
    commit(db, "Participant name already exists.")
    return {"id": participant.id, "name": participant.name, "message": f"{name} registered successfully!"}


@app.post("/{sport}/participants/{participant_id}/team")
def submit_team(sport: Sport, participant_id: int, request: TeamSubmission, db: Session = Depends(get_db)):
    participant = get_row(db, models.Participant, sport, participant_id, "Participant")
    race = get_row(db, models.Race, sport, request.race_id, "Race")
    if race.race_date is not None and race.race_date <= utcnow():
        raise HTTPException(400, "The market for this race is closed.")

    limit = rules.RIDER_LIMIT[sport]
    if len(request.rider_ids) != limit:
        raise HTTPException(400, f"A team needs exactly {limit} riders.")
    if len(set(request.rider_ids)) != len(request.rider_ids):
        raise HTTPException(400, "A rider can only be picked once.")

    data = load_league(db, sport)
    riders_by_id = {r.id: r for r in data["riders"]}
    picked = [riders_by_id.get(rider_id) for rider_id in request.rider_ids]
    if None in picked:
        raise HTTPException(400, "Unknown rider in team.")
    constructor = next((c for c in data["constructors"] if c.id == request.constructor_id), None)
    if constructor is None:
        raise HTTPException(400, "Unknown constructor.")

    constructor_price, _ = effective_constructor_prices([constructor], data["riders"])[constructor.id]
    cost = sum(r.price for r in picked) + constructor_price
    budget = rules.BUDGET[sport]
    if cost > budget:
        raise HTTPException(400, f"Team costs {cost:g}, over the budget of {budget}.")

    # Snapshots are append-only: every submission is a new row.
    db.add(models.TeamSnapshot(
        participant_id=participant.id,
        race_id=race.id,
        rider_ids=json.dumps(request.rider_ids),
        constructor_id=constructor.id,
        created_at=utcnow(),
    ))
    participant.rider_ids = json.dumps(request.rider_ids)
    commit(db, "Could not save team.")
    return {"message": f"Team saved for {race.gp_name}.", "cost": cost}


@app.get("/{sport}/participants/{participant_id}/team")
def get_team(sport: Sport, participant_id: int, race_id: Optional[int] = None, db: Session = Depends(get_db)):
    get_row(db, models.Participant, sport, participant_id, "Participant")
    data = load_league(db, sport)
    if race_id is None:
        race_ids = {r.id for r in data["races"]}
        team = resolve_latest_team(participant_id, data["snapshots"], race_ids)
    else:
        team = resolve_team(participant_id, race_id, data["snapshots"])
    return {"rider_ids": team.rider_ids, "constructor_id": team.constructor_id}


@app.get("/{sport}/participants/{participant_id}/score")
def get_score(sport: Sport, participant_id: int, race_id: Optional[int] = None, db: Session = Depends(get_db)):
    get_row(db, models.Participant, sport, participant_id, "Participant")
    data = load_league(db, sport)
    args = (data["snapshots"], data["rider_points"], data["riders"], data["constructors"])

    if race_id is not None:
        if not any(r.id == race_id for r in data["races"]):
            raise HTTPException(404, "Race not found.")
        return serialize_breakdown(score_breakdown(participant_id, race_id, *args))

    total = calculate_score(participant_id, GENERAL, data["races"], *args)
    per_race = [
        {"race_id": r.id, "gp_name": r.gp_name, "score": calculate_score(participant_id, r.id, data["races"], *args)}
        for r in data["races"]
    ]
    return {"total_score": total, "rounded_total": display_round(total), "races": per_race}


@app.get("/{sport}/leaderboard")
def get_leaderboard(sport: Sport, view: str = GENERAL, db: Session = Depends(get_db)):
    data = load_league(db, sport)
    return {"leaderboard": leaderboard(
        parse_view(view), data["participants"], data["races"], data["snapshots"],
        data["rider_points"], data["riders"], data["constructors"],
    )}


@app.get("/{sport}/riders/standings")
def get_rider_standings(sport: Sport, view: str = GENERAL, db: Session = Depends(get_db)):
    data = load_league(db, sport)
    return {"riders": rider_standings(
        sport, parse_view(view), data["riders"], data["participants"],
        data["races"], data["snapshots"], data["rider_points"],
    )}


@app.get("/{sport}/constructors/standings")
def get_constructor_standings(sport: Sport, view: str = GENERAL, db: Session = Depends(get_db)):
    data = load_league(db, sport)
    return {"constructors": constructor_standings(
        sport, parse_view(view), data["constructors"], data["riders"], data["participants"],
        data["races"], data["snapshots"], data["rider_points"],
        constructor_prices=display_prices(data),
    )}


@app.get("/{sport}/price-changes")
def get_price_changes(sport: Sport, db: Session = Depends(get_db)):
    data = load_league(db, sport)
    return price_movers(data["riders"], data["constructors"])


@app.get("/{sport}/dream-team")
def get_dream_team(sport: Sport, db: Session = Depends(get_db)):
    data = load_league(db, sport)
    best = dream_team(
        sport, data["riders"], data["constructors"], data["races"], data["rider_points"],
        constructor_prices=display_prices(data),
    )
    if best is None:
        return {"dream_team": None}
    return {"dream_team": {
        "race_id": best["race"].id,
        "gp_name": best["race"].gp_name,
        "rider_ids": [r.id for r in best["riders"]],
        "constructor_id": best["constructor"].id,
        "score": best["score"],
        "rounded_score": best["rounded_score"],
        "cost": best["cost"],
    }}


# ------------------------------------------------------------------------------
# Admin endpoints
# ------------------------------------------------------------------------------

@app.post("/{sport}/price-adjustments/run", dependencies=[Depends(require_admin)])
def run_adjustments(sport: Sport, db: Session = Depends(get_db)):
    outcome = run_price_adjustment(SqlLeagueRepository(db), sport.value, True)
    plan = outcome.plan
    return {
        "status": outcome.status,
        "race_ids": plan.race_ids if plan else [],
        "rider_updates": [asdict(u) for u in plan.rider_updates] if plan else [],
        "constructor_updates": [asdict(u) for u in plan.constructor_updates] if plan else [],
        "notifications": [asdict(n) for n in outcome.notifications],
    }


@app.put("/{sport}/participants/{participant_id}", dependencies=[Depends(require_admin)])
def rename_participant(sport: Sport, participant_id: int, request: ParticipantUpdate, db: Session = Depends(get_db)):
    participant = get_row(db, models.Participant, sport, participant_id, "Participant")
    name = request.name.strip()
    if not name:
        raise HTTPException(400, "Participant name cannot be empty.")
    participant.name = name
    commit(db, "Participant name already exists.")
    return {"message": "Participant updated."}


@app.delete("/{sport}/participants/{participant_id}", dependencies=[Depends(require_admin)])
def delete_participant(sport: Sport, participant_id: int, db: Session = Depends(get_db)):
    participant = get_row(db, models.Participant, sport, participant_id, "Participant")
    db.query(models.TeamSnapshot).filter(models.TeamSnapshot.participant_id == participant.id).delete()
    db.delete(participant)
    db.commit()
    return {"message": "Participant deleted."}


@app.post("/{sport}/riders", dependencies=[Depends(require_admin)])
def create_rider(sport: Sport, request: RiderCreate, db: Session = Depends(get_db)):
    if request.constructor_id is not None:
        get_row(db, models.Constructor, sport, request.constructor_id, "Constructor")
    rider = models.Rider(
        sport=sport.value,
        name=request.name,
        team=request.team,
        constructor_id=request.constructor_id,
        price=request.price,
        initial_price=request.price if request.initial_price is None else request.initial_price,
        condition=request.condition or None,
    )
    db.add(rider)
    db.commit()
    return asdict(rider_from_row(rider))


@app.patch("/{sport}/riders/{rider_id}", dependencies=[Depends(require_admin)])
def update_rider(sport: Sport, rider_id: int, request: RiderUpdate, db: Session = Depends(get_db)):
    rider = get_row(db, models.Rider, sport, rider_id, "Rider")
    changes = request.model_dump(exclude_unset=True)
    if changes.get("constructor_id") is not None:
        get_row(db, models.Constructor, sport, changes["constructor_id"], "Constructor")
    if "condition" in changes:
        # Blank clears the condition.
        changes["condition"] = changes["condition"] or None
    for key, value in changes.items():
        setattr(rider, key, value)
    db.commit()
    return asdict(rider_from_row(rider))


@app.post("/{sport}/constructors", dependencies=[Depends(require_admin)])
def create_constructor(sport: Sport, request: ConstructorCreate, db: Session = Depends(get_db)):
    constructor = models.Constructor(
        sport=sport.value,
        name=request.name,
        price=request.price,
        initial_price=request.price if request.initial_price is None else request.initial_price,
    )
    db.add(constructor)
    db.commit()
    return {"id": constructor.id, "name": constructor.name, "price": constructor.price,
            "initial_price": constructor.initial_price}


@app.post("/{sport}/races", dependencies=[Depends(require_admin)])
def create_race(sport: Sport, request: RaceCreate, db: Session = Depends(get_db)):
    race = models.Race(sport=sport.value, prices_adjusted=False, **request.model_dump())
    db.add(race)
    db.commit()
    return asdict(race_from_row(race))


@app.patch("/{sport}/races/{race_id}", dependencies=[Depends(require_admin)])
def update_race(sport: Sport, race_id: int, request: RaceUpdate, db: Session = Depends(get_db)):
    race = get_row(db, models.Race, sport, race_id, "Race")
    for key, value in request.model_dump(exclude_unset=True).items():
        setattr(race, key, value)
    db.commit()
    return asdict(race_from_row(race))


@app.put("/{sport}/races/{race_id}/points", dependencies=[Depends(require_admin)])
def set_race_points(sport: Sport, race_id: int, request: PointsSubmission, db: Session = Depends(get_db)):
    """
    Upsert the per-rider points of a race. Finishing positions, when given,
    are converted with the sport's points table; otherwise the raw main and
    sprint values are used (anything non-numeric counts as 0).
    """
    race = get_row(db, models.Race, sport, race_id, "Race")
    rider_ids = {
        r.id for r in db.query(models.Rider.id).filter(models.Rider.sport == sport.value)
    }
    rows = []
    for entry in request.entries:
        if entry.rider_id not in rider_ids:
            raise HTTPException(400, f"Unknown rider {entry.rider_id}.")
        main = entry.main
        if entry.main_position is not None:
            main = rules.points_for_position(sport, entry.main_position)
        sprint = entry.sprint
        if entry.sprint_position is not None:
            sprint = rules.points_for_position(sport, entry.sprint_position, sprint=True)
        rows.append(_points_row(race.id, entry.rider_id, main, sprint))
    upsert_points(db, race.id, rows)
    return {"message": f"Points saved for {race.gp_name}.", "updated": len(rows)}


def _points_row(race_id, rider_id, main, sprint):
    return RoundPoints(race_id=race_id, rider_id=rider_id, total=main + sprint, main=main, sprint=sprint)


@app.post("/{sport}/races/{race_id}/import", dependencies=[Depends(require_admin)])
def import_race_points(sport: Sport, race_id: int, db: Session = Depends(get_db)):
    """Pull official F1 race and sprint points for the round from Jolpica."""
    if sport != Sport.F1:
        raise HTTPException(400, "Results import is only available for F1.")
    race = get_row(db, models.Race, sport, race_id, "Race")
    riders = [
        rider_from_row(r)
        for r in db.query(models.Rider).filter(models.Rider.sport == sport.value)
    ]
    try:
        rows = fetch_round_points(race.id, race.round, riders)
    except ResultsUnavailable as e:
        raise HTTPException(502, str(e))
    upsert_points(db, race.id, rows)
    return {"message": f"Imported points for {race.gp_name}.", "updated": len(rows)}
