"""
Accès BDD aux pointages QR (append-only, une ligne par couple token/utilisateur).
Comme token_store, aucune fonction ne commite.
"""

import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from attendqr.models.qr import QRCheckIn, QRToken
from attendqr.schemas.qr import QRCheckInFilters, QRScopeFilters
from attendqr.services import token_store


def create(
    db: Session,
    *,
    token_id: uuid.UUID,
    user_id: uuid.UUID,
    check_in_time: datetime,
    location: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> QRCheckIn:
    """
    Insère le pointage et force le flush : une violation de la contrainte
    (token_id, user_id) remonte ici sous forme d'IntegrityError.
    """
    check_in = QRCheckIn(
        token_id=token_id,
        user_id=user_id,
        check_in_time=check_in_time,
        location=location,
        ip_address=ip_address,
        user_agent=user_agent,
        is_valid=True,
    )
    db.add(check_in)
    db.flush()
    return check_in


def get_by_id(db: Session, check_in_id: uuid.UUID) -> Optional[QRCheckIn]:
    return db.execute(select(QRCheckIn).where(QRCheckIn.id == check_in_id)).scalar()


def get_for_user(db: Session, token_id: uuid.UUID, user_id: uuid.UUID) -> Optional[QRCheckIn]:
    return db.execute(
        select(QRCheckIn).where(QRCheckIn.token_id == token_id, QRCheckIn.user_id == user_id)
    ).scalar()


def exists_for_token(db: Session, token_id: uuid.UUID) -> bool:
    found = db.execute(
        select(QRCheckIn.id).where(QRCheckIn.token_id == token_id).limit(1)
    ).scalar()
    return found is not None


def find_many(db: Session, filters: QRCheckInFilters) -> Tuple[List[QRCheckIn], int]:
    conditions = []
    if filters.token_id:
        conditions.append(QRCheckIn.token_id == filters.token_id)
    if filters.user_id:
        conditions.append(QRCheckIn.user_id == filters.user_id)
    if filters.course_id:
        conditions.append(
            QRCheckIn.token_id.in_(select(QRToken.id).where(QRToken.course_id == filters.course_id))
        )
    if filters.is_valid is not None:
        conditions.append(QRCheckIn.is_valid.is_(filters.is_valid))
    if filters.start_date:
        conditions.append(QRCheckIn.check_in_time >= filters.start_date)
    if filters.end_date:
        conditions.append(QRCheckIn.check_in_time <= filters.end_date)

    total = db.execute(
        select(func.count()).select_from(QRCheckIn).where(*conditions)
    ).scalar() or 0

    sort_column = getattr(QRCheckIn, filters.sort_by)
    order = sort_column.asc() if filters.sort_order == "asc" else sort_column.desc()

    check_ins = db.execute(
        select(QRCheckIn)
        .where(*conditions)
        .order_by(order, QRCheckIn.id)
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
    ).scalars().all()

    return list(check_ins), total


def delete(db: Session, check_in: QRCheckIn) -> None:
    db.delete(check_in)
    db.flush()


def _scoped(stmt, scope: Optional[QRScopeFilters]):
    conditions = token_store.scope_conditions(scope)
    if not conditions:
        return stmt
    return stmt.where(QRCheckIn.token_id.in_(select(QRToken.id).where(*conditions)))


def count(db: Session, is_valid: Optional[bool] = None, scope: Optional[QRScopeFilters] = None) -> int:
    stmt = select(func.count()).select_from(QRCheckIn)
    if is_valid is not None:
        stmt = stmt.where(QRCheckIn.is_valid.is_(is_valid))
    return db.execute(_scoped(stmt, scope)).scalar() or 0


def count_between(
    db: Session, start: datetime, end: datetime, scope: Optional[QRScopeFilters] = None
) -> Tuple[int, int]:
    """Retourne (nombre de pointages, nombre d'utilisateurs distincts) sur [start, end[."""
    stmt = select(func.count(), func.count(distinct(QRCheckIn.user_id))).where(
        QRCheckIn.check_in_time >= start, QRCheckIn.check_in_time < end
    )
    total, unique_users = db.execute(_scoped(stmt, scope)).one()
    return total or 0, unique_users or 0


def statistics(db: Session, day_start: datetime, day_end: datetime, scope: Optional[QRScopeFilters] = None) -> dict:
    """Agrège les compteurs tokens/pointages ; la journée est délimitée par [day_start, day_end[."""
    by_status = token_store.count_by_status(db, scope)
    today_check_ins, today_users = count_between(db, day_start, day_end, scope)
    return {
        "total_tokens": sum(by_status.values()),
        "active_tokens": by_status["ACTIVE"],
        "expired_tokens": by_status["EXPIRED"],
        "used_tokens": by_status["USED"],
        "total_check_ins": count(db, scope=scope),
        "valid_check_ins": count(db, is_valid=True, scope=scope),
        "invalid_check_ins": count(db, is_valid=False, scope=scope),
        "today": {
            "tokens_generated": token_store.count_created_between(db, day_start, day_end, scope),
            "check_ins": today_check_ins,
            "unique_users": today_users,
        },
    }
