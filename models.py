from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from database import Base


class Constructor(Base):
    __tablename__ = "constructors"
    id = Column(Integer, primary_key=True, index=True)
    sport = Column(String(10), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    # Stored price, the one moved by the price adjustment run. The displayed
    # price is derived from the team's riders at load time.
    price = Column(Integer, nullable=False, default=0)
    initial_price = Column(Integer, nullable=False, default=0)


class Rider(Base):
    __tablename__ = "riders"
    id = Column(Integer, primary_key=True, index=True)
    sport = Column(String(10), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    # Team name; used to join to a constructor when constructor_id is empty.
    team = Column(String(100), nullable=False, default="")
    constructor_id = Column(Integer, ForeignKey("constructors.id"), nullable=True)
    price = Column(Integer, nullable=False, default=0)
    initial_price = Column(Integer, nullable=False, default=0)
    # e.g. "injured"; an active condition freezes the price.
    condition = Column(String(100), nullable=True)


class Race(Base):
    __tablename__ = "races"
    id = Column(Integer, primary_key=True, index=True)
    sport = Column(String(10), nullable=False, index=True)
    round = Column(Integer, nullable=False)
    gp_name = Column(String(100), nullable=False)
    location = Column(String(100), nullable=True)
    race_date = Column(DateTime, nullable=True)
    # Set once by the price adjustment run, never reset.
    prices_adjusted = Column(Boolean, nullable=False, default=False)


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (UniqueConstraint("sport", "name"),)
    id = Column(Integer, primary_key=True, index=True)
    sport = Column(String(10), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    # Latest submitted roster as a JSON-encoded list of rider ids. Convenience
    # cache only, scoring reads team_snapshots.
    rider_ids = Column(Text, nullable=False, default="[]")


class TeamSnapshot(Base):
    __tablename__ = "team_snapshots"
    id = Column(Integer, primary_key=True, index=True)
    participant_id = Column(
        Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    race_id = Column(Integer, ForeignKey("races.id"), nullable=True, index=True)
    # Stored as JSON: list of rider ids, e.g. '[3, 7, 12, 21]'
    rider_ids = Column(Text, nullable=False)
    constructor_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False)


class RiderRoundPoints(Base):
    __tablename__ = "rider_points"
    __table_args__ = (UniqueConstraint("race_id", "rider_id"),)
    id = Column(Integer, primary_key=True, index=True)
    race_id = Column(Integer, ForeignKey("races.id"), nullable=False, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False)
    points = Column(Float, nullable=False, default=0)
    main_points = Column(Float, nullable=False, default=0)
    sprint_points = Column(Float, nullable=False, default=0)
