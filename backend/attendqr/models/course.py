"""
Modèles SQLAlchemy pour les cours et les inscriptions des élèves.
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid

from attendqr.database import Base
from attendqr.timeutils import utcnow


class Course(Base):
    __tablename__ = "courses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(200), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Enrollment(Base):
    """Association cours ↔ élèves inscrits."""
    __tablename__ = "enrollments"

    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), primary_key=True)
    enrolled_at = Column(DateTime, default=utcnow)
