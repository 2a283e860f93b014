"""
Registre de présences journalier alimenté par les pointages QR.

Le registre est une projection dérivée : le pointage QR fait foi. Un échec
ici ne doit jamais annuler le pointage (voir qr_service.validate_token).
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendqr.models.attendance import Attendance
from attendqr.models.qr import QRCheckIn, QRToken

logger = logging.getLogger(__name__)


def _find(db: Session, user_id, course_id, day) -> Optional[Attendance]:
    return db.execute(
        select(Attendance).where(
            Attendance.user_id == user_id,
            Attendance.course_id == course_id,
            Attendance.date == day,
        )
    ).scalar()


def mark_present_from_check_in(db: Session, token: QRToken, check_in: QRCheckIn) -> Attendance:
    """
    Crée ou met à jour la présence (user_id, course_id, jour UTC du pointage) à PRESENT.

    Si une présence existe déjà pour ce jour (ABSENT saisi plus tôt, autre
    token...), elle est passée à PRESENT et ses métadonnées de pointage
    sont rafraîchies. Commite sa propre transaction.
    """
    # Valeurs copiées : un rollback expirerait token et check_in
    values = {
        "status": "PRESENT",
        "qr_token_id": token.id,
        "check_in_time": check_in.check_in_time,
        "location": check_in.location,
    }
    user_id, course_id = check_in.user_id, token.course_id
    day = check_in.check_in_time.date()

    attendance = _find(db, user_id, course_id, day)
    if attendance is None:
        db.add(Attendance(user_id=user_id, course_id=course_id, date=day, **values))
        try:
            db.commit()
        except IntegrityError:
            # Création concurrente pour le même jour : on bascule en mise à jour
            db.rollback()
            attendance = _find(db, user_id, course_id, day)
            if attendance is None:
                raise
    if attendance is not None:
        for field, value in values.items():
            setattr(attendance, field, value)
        db.commit()

    attendance = _find(db, user_id, course_id, day)
    logger.info(
        "Présence %s → PRESENT (utilisateur %s, cours %s, %s)",
        attendance.id, user_id, course_id, day,
    )
    return attendance
