# src/freight_rules/db.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .settings import settings

logger = logging.getLogger(__name__)


# psycopg3 uses 'postgresql+psycopg' instead of 'postgresql+psycopg2'
def get_sqlalchemy_url() -> str:
    url = settings.sqlalchemy_url
    if 'postgresql+psycopg2' in url:
        url = url.replace('postgresql+psycopg2', 'postgresql+psycopg')
    elif url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+psycopg://')
    return url


def _engine_kwargs(url: str) -> Dict[str, Any]:
    if not url.startswith("postgresql"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30 second timeout
            # Disable psycopg's automatic server-side prepared statements
            # so pooled connections don't collide on statement names.
            "prepare_threshold": 0,
        },
    }


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Engine for the configured database, created on first use."""
    url = get_sqlalchemy_url()
    return create_engine(url, **_engine_kwargs(url))


SessionLocal = sessionmaker(autoflush=False, autocommit=False)


def new_session() -> Session:
    return SessionLocal(bind=get_engine())


def init_db() -> None:
    # Safe if tables already exist
    from .models import Base

    Base.metadata.create_all(bind=get_engine())
    logger.info("Carrier rule tables ensured")
