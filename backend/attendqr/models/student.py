"""
Modèle SQLAlchemy pour la table students.
Un élève est un profil rattaché à un utilisateur (user_id unique).
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid

from attendqr.database import Base
from attendqr.timeutils import utcnow


class Student(Base):
    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    student_number = Column(String(50), unique=True, nullable=True)
    created_at = Column(DateTime, default=utcnow)
