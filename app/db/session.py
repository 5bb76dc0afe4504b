# app/db/session.py
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.db.base import Base

logger = logging.getLogger(__name__)

engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.SQLALCHEMY_ECHO,
    **settings.SQLALCHEMY_ENGINE_OPTIONS,
)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def init_db(bind=None) -> None:
    """Crée les tables de synchronisation si elles n'existent pas"""
    # Les modèles doivent être importés pour être enregistrés dans Base.metadata
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Tables de synchronisation prêtes")


def get_session_factory() -> sessionmaker:
    """Fabrique de sessions utilisée par le moteur (une transaction par opération)"""
    return SessionLocal

