# db.py
import os
from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base

load_dotenv()

# Load DATABASE_URL from environment variable
DATABASE_URL = os.getenv("DATABASE_URL")

# Fallback to local SQLite database if DATABASE_URL not set
if not DATABASE_URL:
    DATABASE_URL = "sqlite:///./ironworks.db"

_engine_kwargs = {"pool_pre_ping": True, "future": True}
if DATABASE_URL.startswith("sqlite"):
    # Flask serves requests from several threads
    _engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
    expire_on_commit=False  # objects stay readable after commit for jsonify
)

# Base class for declarative models
Base = declarative_base()


def init_db():
    """Create any missing tables for the registered models."""
    from . import models  # noqa: F401  registers every model on Base.metadata
    Base.metadata.create_all(bind=engine)


def check_connection():
    """Run `SELECT 1 + 1` and return the result, raising SQLAlchemyError on failure."""
    with engine.connect() as conn:
        return conn.execute(text("SELECT 1 + 1 AS solution")).scalar()


def describe_database():
    """Human readable target for start-up logs (credentials stripped)."""
    return engine.url.render_as_string(hide_password=True)
