from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import DATABASE_URL


def _engine_options(url):
    if url.startswith("sqlite"):
        # Single shared connection so an in-memory database survives across
        # sessions and threads (TestClient runs handlers in a worker thread).
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    # Neon requires SSL, so we enforce that with "sslmode": "require".
    # pool_recycle=3600 recycles connections after 1 hour.
    return {
        "connect_args": {"sslmode": "require"},
        "pool_recycle": 3600,
        "pool_pre_ping": True,  # ping connections before use to prevent stale/EOF errors
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

# Create a configured "Session" class.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for our ORM models.
Base = declarative_base()
