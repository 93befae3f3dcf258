"""SQLAlchemy base and session factory for the orders and ledger tables."""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from settlepay.common.config import settings


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def make_session_factory(database_url: str) -> sessionmaker:
    """One engine per URL; sessions keep loaded rows readable after commit."""

    engine = create_engine(database_url, pool_pre_ping=True)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


SessionLocal = make_session_factory(settings.database_url)
