"""
Configuration partagée pour tous les tests.

- `client` : override de la dépendance get_db pour éviter toute connexion réelle à PostgreSQL.
- `session_factory` / `db` / `seed` : base SQLite fichier (une par test) pour les tests
  de service, y compris les tests de concurrence multi-threads.
"""

import os

# Avant tout import d'attendqr : Settings est instancié à l'import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from types import SimpleNamespace  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import attendqr.models  # noqa: E402,F401
from attendqr.database import Base, get_db  # noqa: E402
from attendqr.main import app  # noqa: E402
from attendqr.models.course import Course, Enrollment  # noqa: E402
from attendqr.models.student import Student  # noqa: E402
from attendqr.models.user import Teacher, User  # noqa: E402
from attendqr.services.rate_limiter import RateLimiter  # noqa: E402


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def session_factory(tmp_path):
    """Moteur SQLite fichier en WAL : lectures et écritures concurrentes entre threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'attendqr.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _set_wal(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def limiter():
    """Limiteur large : les tests qui ciblent le throttling créent le leur."""
    return RateLimiter(max_attempts=1000, window_seconds=60)


def _user(db, email, name, role):
    user = User(email=email, name=name, role=role)
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def seed(db):
    """
    Jeu de données minimal :
    - un cours C1 avec un enseignant et 4 élèves inscrits
    - un cours C2 sans inscrit
    - un élève non inscrit (outsider) et un utilisateur sans profil élève (no_profile)
    """
    teacher_user = _user(db, "prof.martin@ecole.test", "Prof Martin", "TEACHER")
    teacher = Teacher(user_id=teacher_user.id, department="Sciences")
    course = Course(title="Physique", code="C1")
    other_course = Course(title="Chimie", code="C2")
    db.add_all([teacher, course, other_course])
    db.flush()

    students = []
    for i in range(4):
        user = _user(db, f"eleve{i}@ecole.test", f"Élève {i}", "STUDENT")
        student = Student(user_id=user.id, student_number=f"S-{i:03d}")
        db.add(student)
        db.flush()
        db.add(Enrollment(course_id=course.id, student_id=student.id))
        students.append(user.id)

    outsider = _user(db, "outsider@ecole.test", "Hors cours", "STUDENT")
    db.add(Student(user_id=outsider.id, student_number="S-999"))
    no_profile = _user(db, "parent@ecole.test", "Parent", "STUDENT")
    db.commit()

    return SimpleNamespace(
        course_id=course.id,
        other_course_id=other_course.id,
        teacher_id=teacher.id,
        teacher_user_id=teacher_user.id,
        students=students,
        outsider=outsider.id,
        no_profile=no_profile.id,
    )
