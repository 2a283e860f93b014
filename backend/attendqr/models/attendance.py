"""
Modèle SQLAlchemy pour le registre de présences journalier.

Une ligne par (user_id, course_id, date). Le pointage QR la crée ou la
passe à PRESENT ; les autres statuts sont posés par les modules externes
(congés, saisie manuelle).
"""

import uuid
from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid

from attendqr.database import Base
from attendqr.timeutils import utcnow

ATTENDANCE_STATUSES = ("PRESENT", "ABSENT", "LATE", "EXCUSED")


class Attendance(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", "date", name="uq_attendance_user_course_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="PRESENT")  # PRESENT, ABSENT, LATE, EXCUSED

    qr_token_id = Column(Uuid, ForeignKey("qr_tokens.id", ondelete="SET NULL"), nullable=True)
    check_in_time = Column(DateTime, nullable=True)
    location = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
