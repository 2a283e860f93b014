"""
Configuration de la connexion à la base de données.
PostgreSQL en production, SQLite accepté pour le développement local et les tests.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from attendqr.config import settings


def _connect_args(url: str) -> dict:
    # SQLite refuse par défaut qu'une connexion change de thread (threadpool FastAPI)
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(settings.DATABASE_URL, connect_args=_connect_args(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI — fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Crée les tables manquantes (développement uniquement, AUTO_CREATE_TABLES)."""
    import attendqr.models  # noqa: F401 : enregistre les modèles dans Base.metadata

    Base.metadata.create_all(bind=engine)
