"""
Modèles SQLAlchemy pour les QR tokens de présence et leurs pointages.

Invariants portés par le schéma :
- code unique (valeur encodée dans l'image QR)
- valid_until > valid_from
- 0 <= used_count <= max_uses
- au plus un pointage par (token_id, user_id)
"""

import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from attendqr.database import Base
from attendqr.timeutils import utcnow

QR_STATUSES = ("ACTIVE", "EXPIRED", "USED")


class QRToken(Base):
    """QR code émis par un enseignant pour un cours, borné dans le temps et en nombre d'usages."""
    __tablename__ = "qr_tokens"
    __table_args__ = (
        CheckConstraint("valid_until > valid_from", name="ck_qr_tokens_validity_window"),
        CheckConstraint("used_count >= 0", name="ck_qr_tokens_used_count_positive"),
        CheckConstraint("used_count <= max_uses", name="ck_qr_tokens_used_count_quota"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(64), unique=True, nullable=False)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    teacher_id = Column(Uuid, ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False)

    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    max_uses = Column(Integer, nullable=False, default=1)
    used_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE, EXPIRED, USED

    location = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    course = relationship("Course", lazy="joined")
    teacher = relationship("Teacher", lazy="joined")


class QRCheckIn(Base):
    """Pointage d'un utilisateur avec un QR token. Horodaté côté serveur uniquement."""
    __tablename__ = "qr_check_ins"
    __table_args__ = (
        UniqueConstraint("token_id", "user_id", name="uq_qr_check_in_token_user"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    token_id = Column(Uuid, ForeignKey("qr_tokens.id", ondelete="RESTRICT"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    check_in_time = Column(DateTime, nullable=False, default=utcnow)
    location = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    is_valid = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    token = relationship("QRToken", lazy="joined")
