"""
Service métier des QR codes de présence.

Flux de pointage (validate_token), chaque étape pouvant rejeter :
  1. Code présent                         → 400
  2. Limiteur de tentatives (IP ou user)  → 429, avant toute recherche du code
  3. Token existant                       → 404
  4. Fenêtre de validité / quota / statut → 410 avec la raison précise
  5. Élève inscrit au cours du token      → 404 / 403
  6. Pas de pointage existant             → 409
  7. INSERT pointage + incrément conditionnel du compteur, même transaction
  8. Quota atteint → token EXPIRED immédiatement
  9. Registre de présences (best-effort, n'annule jamais le pointage)
"""

import io
import logging
import secrets
import string
import threading
import uuid
import weakref
from datetime import datetime, time, timedelta
from typing import Optional

import qrcode
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendqr.config import settings
from attendqr.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    TooManyRequestsError,
)
from attendqr.models.qr import QRToken
from attendqr.schemas.qr import (
    AttendanceResponse,
    PageMeta,
    QRCheckInFilters,
    QRCheckInPage,
    QRCheckInResponse,
    QRExpireResult,
    QRScopeFilters,
    QRStatistics,
    QRTokenCreate,
    QRTokenFilters,
    QRTokenPage,
    QRTokenResponse,
    QRValidationRequest,
    QRValidationResponse,
)
from attendqr.services import (
    attendance_service,
    checkin_store,
    directory_service,
    token_store,
)
from attendqr.services.rate_limiter import RateLimiter
from attendqr.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits
MAX_CODE_ATTEMPTS = 5

ALREADY_CHECKED_IN = "User has already checked in with this QR token"
QUOTA_REACHED = "Token has reached maximum usage limit"


class _TokenLock:
    """Verrou par token ; référencé faiblement par le registre pour ne pas s'accumuler."""

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()


class _TokenLockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[uuid.UUID, _TokenLock]" = weakref.WeakValueDictionary()

    def get(self, token_id: uuid.UUID) -> _TokenLock:
        with self._guard:
            lock = self._locks.get(token_id)
            if lock is None:
                lock = _TokenLock()
                self._locks[token_id] = lock
            return lock


_token_locks = _TokenLockRegistry()


# ------------------------------------------------------------------
# Émission
# ------------------------------------------------------------------

def generate_code(length: Optional[int] = None) -> str:
    """Code alphanumérique tiré d'une source cryptographique (module secrets)."""
    length = length or settings.QR_CODE_LENGTH
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def _clamp_max_uses(value: Optional[int]) -> int:
    if value is None:
        value = settings.QR_DEFAULT_MAX_USES
    return max(1, min(value, settings.QR_MAX_USES_LIMIT))


def issue_token(db: Session, data: QRTokenCreate, now: Optional[datetime] = None) -> QRTokenResponse:
    """
    Génère un QR token ACTIVE pour un cours et un enseignant.

    Règles :
    - valid_from absent → maintenant ; plus de QR_CLOCK_SKEW_MINUTES dans le passé → ramené à maintenant
    - valid_until absent → maintenant + QR_DEFAULT_VALIDITY_MINUTES
    - valid_until <= valid_from → 400
    - valid_until plafonné à maintenant + QR_MAX_VALIDITY_HOURS
    - max_uses borné dans [1, QR_MAX_USES_LIMIT]

    Lève NotFoundError si le cours ou l'enseignant est introuvable.
    """
    if directory_service.get_course(db, data.course_id) is None:
        raise NotFoundError("Course not found")
    if directory_service.get_teacher(db, data.teacher_id) is None:
        raise NotFoundError("Teacher not found")

    now = now or utcnow()
    valid_from = to_naive_utc(data.valid_from) or now
    if valid_from < now - timedelta(minutes=settings.QR_CLOCK_SKEW_MINUTES):
        valid_from = now
    valid_until = to_naive_utc(data.valid_until) or now + timedelta(minutes=settings.QR_DEFAULT_VALIDITY_MINUTES)

    if valid_until <= valid_from:
        raise BadRequestError("valid_until must be after valid_from")

    ceiling = now + timedelta(hours=settings.QR_MAX_VALIDITY_HOURS)
    if valid_until > ceiling:
        valid_until = ceiling
    # Un valid_from au-delà du plafond rendrait la fenêtre vide après écrêtage
    if valid_until <= valid_from:
        raise BadRequestError(
            f"valid_from cannot be more than {settings.QR_MAX_VALIDITY_HOURS} hours from now"
        )

    max_uses = _clamp_max_uses(data.max_uses)

    last_error = None
    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        try:
            token = token_store.create(
                db,
                code=generate_code(),
                course_id=data.course_id,
                teacher_id=data.teacher_id,
                valid_from=valid_from,
                valid_until=valid_until,
                max_uses=max_uses,
                location=data.location,
                description=data.description,
            )
            db.commit()
            break
        except IntegrityError as exc:
            # Collision de code (improbable sur 62^32) : on retire un code
            db.rollback()
            last_error = exc
            logger.warning("Collision à l'émission d'un QR token (tentative %d/%d)", attempt, MAX_CODE_ATTEMPTS)
    else:
        raise last_error

    db.refresh(token)
    logger.info(
        "QR token %s émis (cours %s, enseignant %s, %s → %s, %d usage(s))",
        token.id, token.course_id, token.teacher_id, token.valid_from, token.valid_until, token.max_uses,
    )
    return QRTokenResponse.model_validate(token)


# ------------------------------------------------------------------
# Validation / pointage
# ------------------------------------------------------------------

def check_token_validity(token: QRToken, now: datetime) -> Optional[str]:
    """
    Retourne la raison d'invalidité du token à l'instant `now`, ou None s'il est utilisable.
    L'ordre des contrôles est significatif : la première condition violée l'emporte.
    """
    if now > token.valid_until:
        return "Token has expired"
    if now < token.valid_from:
        return "Token is not yet valid"
    if token.used_count >= token.max_uses:
        return QUOTA_REACHED
    if token.status != "ACTIVE":
        return f"Token status is {token.status}"
    return None


def _record_check_in(db: Session, token: QRToken, data: QRValidationRequest, now: datetime):
    """
    Section critique (appelée sous le verrou du token) : doublon, INSERT, incrément, expiration.
    Commit unique ; tout échec annule l'ensemble.
    """
    token_id = token.id

    if checkin_store.get_for_user(db, token_id, data.user_id) is not None:
        raise ConflictError(ALREADY_CHECKED_IN)

    try:
        check_in = checkin_store.create(
            db,
            token_id=token_id,
            user_id=data.user_id,
            check_in_time=now,
            location=data.location or token.location,
            ip_address=data.ip_address,
            user_agent=data.user_agent,
        )

        if not token_store.increment_used_count(db, token_id):
            db.rollback()
            current = token_store.get_by_id(db, token_id)
            reason = check_token_validity(current, now) if current is not None else None
            raise GoneError(reason or QUOTA_REACHED)

        db.refresh(token)
        retired = token.used_count >= token.max_uses
        if retired:
            token_store.expire_token(db, token)

        db.commit()
    except IntegrityError:
        # Contrainte (token_id, user_id) : un pointage concurrent est passé avant
        db.rollback()
        raise ConflictError(ALREADY_CHECKED_IN)

    logger.info("Pointage %s : utilisateur %s avec le token %s", check_in.id, data.user_id, token_id)
    if retired:
        logger.info("QR token %s expiré : quota de %d usage(s) atteint", token_id, token.max_uses)
    return check_in


def validate_token(
    db: Session,
    data: QRValidationRequest,
    limiter: RateLimiter,
    now: Optional[datetime] = None,
    rate_limit_key: Optional[str] = None,
) -> QRValidationResponse:
    """
    Valide un code QR soumis par un utilisateur et enregistre son pointage.
    L'horodatage du pointage est toujours celui du serveur.

    `rate_limit_key` est l'adresse observée par le serveur (jamais le corps de
    la requête) ; à défaut, les tentatives sont comptées par user_id.
    data.ip_address n'est conservé que comme trace sur le pointage.
    """
    code = data.submitted_code
    if not code:
        raise BadRequestError("Token or code is required")

    identifier = rate_limit_key or str(data.user_id)
    if not limiter.hit(identifier):
        logger.warning("Tentatives de validation QR trop nombreuses pour %s", identifier)
        raise TooManyRequestsError("Too many validation attempts. Please try again later.")

    token = token_store.get_by_code(db, code)
    if token is None:
        raise NotFoundError("QR token not found")

    now = now or utcnow()
    reason = check_token_validity(token, now)
    if reason:
        raise GoneError(reason)

    student = directory_service.get_student_by_user(db, data.user_id)
    if student is None:
        raise NotFoundError("Student not found")
    if not directory_service.is_enrolled(db, token.course_id, student.id):
        raise ForbiddenError("User is not enrolled in this course")

    with _token_locks.get(token.id):
        check_in = _record_check_in(db, token, data, now)

    attendance = None
    try:
        attendance = attendance_service.mark_present_from_check_in(db, token, check_in)
    except Exception:
        # Le pointage fait foi ; le registre sera réconcilié plus tard
        db.rollback()
        logger.exception(
            "Échec de mise à jour du registre de présences pour le pointage %s", check_in.id
        )

    return QRValidationResponse(
        is_valid=True,
        message="QR token validated and check-in recorded successfully",
        token=QRTokenResponse.model_validate(token),
        check_in=QRCheckInResponse.model_validate(check_in),
        attendance=AttendanceResponse.model_validate(attendance) if attendance is not None else None,
    )


# ------------------------------------------------------------------
# Consultation et administration
# ------------------------------------------------------------------

def _page_meta(page: int, limit: int, total: int) -> PageMeta:
    return PageMeta(page=page, limit=limit, total=total, total_pages=(total + limit - 1) // limit)


def list_tokens(db: Session, filters: QRTokenFilters) -> QRTokenPage:
    tokens, total = token_store.find_many(db, filters)
    return QRTokenPage(
        data=[QRTokenResponse.model_validate(t) for t in tokens],
        meta=_page_meta(filters.page, filters.limit, total),
    )


def list_check_ins(db: Session, filters: QRCheckInFilters) -> QRCheckInPage:
    check_ins, total = checkin_store.find_many(db, filters)
    return QRCheckInPage(
        data=[QRCheckInResponse.model_validate(c) for c in check_ins],
        meta=_page_meta(filters.page, filters.limit, total),
    )


def _get_token_or_404(db: Session, token_id: uuid.UUID) -> QRToken:
    token = token_store.get_by_id(db, token_id)
    if token is None:
        raise NotFoundError("QR token not found")
    return token


def get_token(db: Session, token_id: uuid.UUID) -> QRTokenResponse:
    return QRTokenResponse.model_validate(_get_token_or_404(db, token_id))


def update_token_status(db: Session, token_id: uuid.UUID, status: str) -> QRTokenResponse:
    token = _get_token_or_404(db, token_id)
    previous = token.status
    token_store.update_status(db, token, status)
    db.commit()
    db.refresh(token)
    logger.info("QR token %s : statut %s → %s", token_id, previous, status)
    return QRTokenResponse.model_validate(token)


def expire_tokens(db: Session, scope: Optional[QRScopeFilters] = None) -> QRExpireResult:
    """Expire manuellement tous les tokens ACTIVE du périmètre donné."""
    count = token_store.expire_matching(db, scope)
    db.commit()
    logger.info("%d QR token(s) expiré(s) manuellement", count)
    return QRExpireResult(count=count)


def expire_elapsed_tokens(db: Session, now: Optional[datetime] = None) -> int:
    """Balayage périodique : ACTIVE → EXPIRED pour les tokens dont valid_until est passé."""
    count = token_store.expire_elapsed(db, now or utcnow())
    db.commit()
    if count:
        logger.info("%d QR token(s) arrivé(s) à échéance passé(s) à EXPIRED", count)
    return count


def get_statistics(
    db: Session, scope: Optional[QRScopeFilters] = None, now: Optional[datetime] = None
) -> QRStatistics:
    now = now or utcnow()
    day_start = datetime.combine(now.date(), time.min)
    day_end = day_start + timedelta(days=1)
    return QRStatistics(**checkin_store.statistics(db, day_start, day_end, scope))


def delete_token(db: Session, token_id: uuid.UUID) -> QRTokenResponse:
    """Supprime un token. Refusé (400) si des pointages y font référence."""
    token = _get_token_or_404(db, token_id)
    if checkin_store.exists_for_token(db, token_id):
        raise BadRequestError("Cannot delete QR token with existing check-ins")

    deleted = QRTokenResponse.model_validate(token)
    token_store.delete(db, token)
    db.commit()
    logger.info("QR token %s supprimé", token_id)
    return deleted


def get_check_in(db: Session, check_in_id: uuid.UUID) -> QRCheckInResponse:
    check_in = checkin_store.get_by_id(db, check_in_id)
    if check_in is None:
        raise NotFoundError("QR check-in not found")
    return QRCheckInResponse.model_validate(check_in)


def delete_check_in(db: Session, check_in_id: uuid.UUID) -> QRCheckInResponse:
    """Suppression administrative d'un pointage. Le compteur du token n'est pas décrémenté."""
    check_in = checkin_store.get_by_id(db, check_in_id)
    if check_in is None:
        raise NotFoundError("QR check-in not found")

    deleted = QRCheckInResponse.model_validate(check_in)
    checkin_store.delete(db, check_in)
    db.commit()
    logger.info("Pointage %s supprimé", check_in_id)
    return deleted


def generate_qr_image(code: str) -> bytes:
    """Génère une image PNG du QR code encodant le code donné."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(code)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_token_png(db: Session, token_id: uuid.UUID) -> bytes:
    return generate_qr_image(_get_token_or_404(db, token_id).code)
