from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, declarative_base
import streamlit as st
from config import SQLALCHEMY_URL


Base = declarative_base()


def engine_options(url: str) -> dict:
    """Pool settings for server databases; SQLite (local dev, tests) takes the defaults."""
    options = {"echo": False, "future": True, "pool_pre_ping": True}
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        return options

    options.update(pool_recycle=3600, pool_size=5, max_overflow=10)
    if backend == "mssql":
        options["fast_executemany"] = True
    return options


@st.cache_resource
def get_engine():
    """Process-wide singleton engine (lazy)"""
    return create_engine(SQLALCHEMY_URL, **engine_options(SQLALCHEMY_URL))

@st.cache_resource
def get_session_factory():
    """Process-wide singleton session factory (lazy)."""
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, future=True, expire_on_commit=False)
