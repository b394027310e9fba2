import os
from contextlib import contextmanager
from typing import Generator

import streamlit as st
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base


# --- 1. SECURE CONFIGURATION ---
def _load_db_secrets() -> dict:
    """Reads the [dealer_db] secrets block; missing secrets.toml means local dev."""
    try:
        return dict(st.secrets.get("dealer_db", {}))
    except FileNotFoundError:
        return {}


def build_database_url() -> str:
    override = os.environ.get("DEALER_DB_URL")
    if override:
        return override

    db_secrets = _load_db_secrets()
    db_user = db_secrets.get("DB_USER")
    db_pass = db_secrets.get("DB_PASS")
    db_host = db_secrets.get("DB_HOST")
    db_port = db_secrets.get("DB_PORT", 3306)
    db_name = db_secrets.get("DB_NAME")

    if db_host and db_user and db_pass and db_name:
        return f"mysql+pymysql://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}"
    # Fallback for local testing
    return "sqlite:///./dealer_bookings_dev.db"


# --- 2. DATABASE URL ---
SQLALCHEMY_DATABASE_URL = build_database_url()

# --- 3. CREATE ENGINE ---
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    pool_pre_ping=True,
    echo=False
)

# --- 4. SESSION AND BASE ---
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session():
    """Context manager for cleaner database transactions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
