"""
Accès BDD aux QR tokens.

Ces fonctions ne commitent jamais : l'unité de travail appartient à qr_service,
qui regroupe pointage + incrément du compteur dans une seule transaction.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from attendqr.models.qr import QR_STATUSES, QRToken
from attendqr.schemas.qr import QRScopeFilters, QRTokenFilters


def _scope_conditions(
    course_id: Optional[uuid.UUID] = None,
    teacher_id: Optional[uuid.UUID] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> list:
    conditions = []
    if course_id:
        conditions.append(QRToken.course_id == course_id)
    if teacher_id:
        conditions.append(QRToken.teacher_id == teacher_id)
    if start_date:
        conditions.append(QRToken.created_at >= start_date)
    if end_date:
        conditions.append(QRToken.created_at <= end_date)
    return conditions


def scope_conditions(scope: Optional[QRScopeFilters]) -> list:
    if scope is None:
        return []
    return _scope_conditions(scope.course_id, scope.teacher_id, scope.start_date, scope.end_date)


def create(
    db: Session,
    *,
    code: str,
    course_id: uuid.UUID,
    teacher_id: uuid.UUID,
    valid_from: datetime,
    valid_until: datetime,
    max_uses: int,
    location: Optional[str] = None,
    description: Optional[str] = None,
) -> QRToken:
    """Ajoute un token ACTIVE (used_count = 0) et force l'INSERT pour remonter un doublon de code."""
    token = QRToken(
        code=code,
        course_id=course_id,
        teacher_id=teacher_id,
        valid_from=valid_from,
        valid_until=valid_until,
        max_uses=max_uses,
        used_count=0,
        status="ACTIVE",
        location=location,
        description=description,
    )
    db.add(token)
    db.flush()
    return token


def get_by_id(db: Session, token_id: uuid.UUID) -> Optional[QRToken]:
    return db.execute(select(QRToken).where(QRToken.id == token_id)).scalar()


def get_by_code(db: Session, code: str) -> Optional[QRToken]:
    return db.execute(select(QRToken).where(QRToken.code == code)).scalar()


def find_many(db: Session, filters: QRTokenFilters) -> Tuple[List[QRToken], int]:
    """Retourne la page demandée et le total correspondant aux filtres."""
    conditions = _scope_conditions(
        filters.course_id, filters.teacher_id, filters.start_date, filters.end_date
    )
    if filters.status:
        conditions.append(QRToken.status == filters.status)

    total = db.execute(
        select(func.count()).select_from(QRToken).where(*conditions)
    ).scalar() or 0

    sort_column = getattr(QRToken, filters.sort_by)
    order = sort_column.asc() if filters.sort_order == "asc" else sort_column.desc()

    tokens = db.execute(
        select(QRToken)
        .where(*conditions)
        .order_by(order, QRToken.id)
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
    ).scalars().all()

    return list(tokens), total


def update_status(db: Session, token: QRToken, status: str) -> QRToken:
    token.status = status
    db.flush()
    return token


def increment_used_count(db: Session, token_id: uuid.UUID) -> bool:
    """
    Incrémente used_count de 1 en un seul UPDATE conditionnel.

    Aucune lecture préalable : la condition used_count < max_uses est évaluée
    par la BDD, ce qui garantit used_count <= max_uses même entre plusieurs workers.
    Retourne False si aucune ligne n'a été modifiée (quota atteint ou token inactif).
    """
    result = db.execute(
        update(QRToken)
        .where(
            QRToken.id == token_id,
            QRToken.status == "ACTIVE",
            QRToken.used_count < QRToken.max_uses,
        )
        .values(used_count=QRToken.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def expire_token(db: Session, token: QRToken) -> QRToken:
    return update_status(db, token, "EXPIRED")


def expire_matching(db: Session, scope: Optional[QRScopeFilters] = None) -> int:
    """Passe à EXPIRED tous les tokens ACTIVE du périmètre. Retourne le nombre modifié."""
    result = db.execute(
        update(QRToken)
        .where(QRToken.status == "ACTIVE", *scope_conditions(scope))
        .values(status="EXPIRED")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def expire_elapsed(db: Session, now: datetime) -> int:
    """Passe à EXPIRED les tokens ACTIVE dont la fenêtre de validité est dépassée."""
    result = db.execute(
        update(QRToken)
        .where(QRToken.status == "ACTIVE", QRToken.valid_until < now)
        .values(status="EXPIRED")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def delete(db: Session, token: QRToken) -> None:
    db.delete(token)
    db.flush()


def count_by_status(db: Session, scope: Optional[QRScopeFilters] = None) -> Dict[str, int]:
    rows = db.execute(
        select(QRToken.status, func.count())
        .where(*scope_conditions(scope))
        .group_by(QRToken.status)
    ).all()
    counts = {status: 0 for status in QR_STATUSES}
    for status, count in rows:
        counts[status] = count
    return counts


def count_created_between(
    db: Session, start: datetime, end: datetime, scope: Optional[QRScopeFilters] = None
) -> int:
    return db.execute(
        select(func.count())
        .select_from(QRToken)
        .where(QRToken.created_at >= start, QRToken.created_at < end, *scope_conditions(scope))
    ).scalar() or 0
