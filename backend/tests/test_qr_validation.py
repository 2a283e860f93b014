"""
Tests du pointage par QR code (validate_token) sur SQLite.
Couverture : chaque cas de rejet, épuisement du quota, limiteur de tentatives,
effet de bord sur le registre de présences.
"""

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest

from attendqr.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    TooManyRequestsError,
)
from attendqr.models.attendance import Attendance
from attendqr.models.qr import QRCheckIn, QRToken
from attendqr.schemas.qr import QRTokenCreate, QRValidationRequest
from attendqr.services import qr_service
from attendqr.services.rate_limiter import RateLimiter
from attendqr.timeutils import utcnow


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------

def issue(db, seed, now, **kwargs):
    data = QRTokenCreate(course_id=seed.course_id, teacher_id=seed.teacher_id, **kwargs)
    return qr_service.issue_token(db, data, now=now)


def validate(db, limiter, code, user_id, now=None, rate_limit_key=None, **kwargs):
    data = QRValidationRequest(token=code, user_id=user_id, **kwargs)
    return qr_service.validate_token(db, data, limiter, now=now, rate_limit_key=rate_limit_key)


def token_row(db, token_id) -> QRToken:
    db.expire_all()
    return db.get(QRToken, token_id)


# ----------------------------------------------------------------
# Pointage accepté
# ----------------------------------------------------------------

class TestSuccessfulCheckIn:
    def test_pointage_enregistre_et_compteur_incremente(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10, location="Amphi A")

        result = validate(db, limiter, token.code, seed.students[0], now=now, ip_address="10.0.0.1")

        assert result.is_valid is True
        assert result.check_in.user_id == seed.students[0]
        assert result.check_in.token_id == token.id
        assert result.check_in.location == "Amphi A"
        assert result.check_in.ip_address == "10.0.0.1"
        assert result.token.used_count == 1
        assert token_row(db, token.id).used_count == 1

    def test_horodatage_serveur(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)

        result = validate(db, limiter, token.code, seed.students[0], now=now)

        assert result.check_in.check_in_time == now

    def test_code_accepte_sous_le_champ_code(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)
        data = QRValidationRequest(code=token.code, user_id=seed.students[0])

        result = qr_service.validate_token(db, data, limiter, now=now)

        assert result.check_in.token_id == token.id

    def test_presence_creee_a_present(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)

        result = validate(db, limiter, token.code, seed.students[0], now=now)

        assert result.attendance is not None
        assert result.attendance.status == "PRESENT"
        assert result.attendance.qr_token_id == token.id
        assert result.attendance.date == now.date()
        assert result.attendance.course_id == seed.course_id

    def test_presence_existante_passee_a_present(self, db, seed, limiter):
        now = utcnow()
        db.add(Attendance(
            user_id=seed.students[0], course_id=seed.course_id, date=now.date(), status="ABSENT",
        ))
        db.commit()
        token = issue(db, seed, now, max_uses=10)

        result = validate(db, limiter, token.code, seed.students[0], now=now)

        rows = db.query(Attendance).filter(Attendance.user_id == seed.students[0]).all()
        assert len(rows) == 1
        assert rows[0].status == "PRESENT"
        assert rows[0].qr_token_id == token.id
        assert rows[0].check_in_time == now
        assert result.attendance.id == rows[0].id

    def test_echec_du_registre_n_annule_pas_le_pointage(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)

        with patch(
            "attendqr.services.qr_service.attendance_service.mark_present_from_check_in",
            side_effect=RuntimeError("registre indisponible"),
        ):
            result = validate(db, limiter, token.code, seed.students[0], now=now)

        assert result.attendance is None
        assert result.check_in.user_id == seed.students[0]
        assert db.query(QRCheckIn).count() == 1
        assert token_row(db, token.id).used_count == 1


# ----------------------------------------------------------------
# Rejets
# ----------------------------------------------------------------

class TestRejections:
    def test_code_vide(self, db, seed, limiter):
        with pytest.raises(BadRequestError):
            validate(db, limiter, "   ", seed.students[0])

    def test_code_absent(self, db, seed, limiter):
        data = QRValidationRequest(user_id=seed.students[0])
        with pytest.raises(BadRequestError, match="required"):
            qr_service.validate_token(db, data, limiter)

    def test_code_inconnu(self, db, seed, limiter):
        with pytest.raises(NotFoundError, match="QR token not found"):
            validate(db, limiter, "X" * 32, seed.students[0])

    def test_token_expire_depuis_une_seconde(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)
        row = token_row(db, token.id)
        row.valid_from = now - timedelta(minutes=10)
        row.valid_until = now - timedelta(seconds=1)
        db.commit()

        with pytest.raises(GoneError, match="Token has expired"):
            validate(db, limiter, token.code, seed.students[0], now=now)

    def test_token_pas_encore_valide(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, valid_from=now + timedelta(seconds=1), max_uses=10)

        with pytest.raises(GoneError, match="Token is not yet valid"):
            validate(db, limiter, token.code, seed.students[0], now=now)

    def test_statut_non_actif(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)
        qr_service.update_token_status(db, token.id, "USED")

        with pytest.raises(GoneError, match="Token status is USED"):
            validate(db, limiter, token.code, seed.students[0], now=now)

    def test_eleve_non_inscrit(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)

        with pytest.raises(ForbiddenError):
            validate(db, limiter, token.code, seed.outsider, now=now)

        assert token_row(db, token.id).used_count == 0

    def test_utilisateur_sans_profil_eleve(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)

        with pytest.raises(NotFoundError, match="Student not found"):
            validate(db, limiter, token.code, seed.no_profile, now=now)

    def test_deuxieme_pointage_conflit(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)
        validate(db, limiter, token.code, seed.students[0], now=now)

        with pytest.raises(ConflictError, match="already checked in"):
            validate(db, limiter, token.code, seed.students[0], now=now)

    def test_rejet_idempotent_apres_conflit(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)
        validate(db, limiter, token.code, seed.students[0], now=now)

        for _ in range(3):
            with pytest.raises(ConflictError):
                validate(db, limiter, token.code, seed.students[0], now=now)

        assert token_row(db, token.id).used_count == 1
        assert db.query(QRCheckIn).count() == 1


# ----------------------------------------------------------------
# Quota
# ----------------------------------------------------------------

class TestQuota:
    def test_usage_unique_expire_le_token(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=1)

        result = validate(db, limiter, token.code, seed.students[0], now=now)

        assert result.token.status == "EXPIRED"
        row = token_row(db, token.id)
        assert row.status == "EXPIRED"
        assert row.used_count == 1

    def test_meme_utilisateur_apres_quota_gone_pas_conflit(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=1)
        validate(db, limiter, token.code, seed.students[0], now=now)

        with pytest.raises(GoneError, match="maximum usage limit"):
            validate(db, limiter, token.code, seed.students[0], now=now)

    def test_scenario_trois_eleves_puis_quatrieme_refuse(self, db, seed, limiter):
        now = utcnow()
        token = issue(db, seed, now, max_uses=3, valid_until=now + timedelta(minutes=10))

        for user_id in seed.students[:3]:
            result = validate(db, limiter, token.code, user_id, now=now)
            assert result.attendance.status == "PRESENT"

        row = token_row(db, token.id)
        assert row.used_count == 3
        assert row.status == "EXPIRED"
        assert db.query(QRCheckIn).count() == 3
        present = db.query(Attendance).filter(
            Attendance.course_id == seed.course_id,
            Attendance.date == now.date(),
            Attendance.status == "PRESENT",
        ).count()
        assert present == 3

        with pytest.raises(GoneError):
            validate(db, limiter, token.code, seed.students[3], now=now)

        assert token_row(db, token.id).used_count == 3

    def test_increment_refuse_quand_quota_atteint_entre_temps(self, db, seed, limiter):
        """Le contrôle de validité est passé mais l'UPDATE conditionnel échoue : rien n'est persisté."""
        now = utcnow()
        token = issue(db, seed, now, max_uses=5)

        with patch("attendqr.services.qr_service.token_store.increment_used_count", return_value=False):
            with pytest.raises(GoneError):
                validate(db, limiter, token.code, seed.students[0], now=now)

        assert db.query(QRCheckIn).count() == 0
        assert token_row(db, token.id).used_count == 0


# ----------------------------------------------------------------
# Limiteur de tentatives
# ----------------------------------------------------------------

class TestRateLimiting:
    def test_sixieme_tentative_refusee_avant_recherche_du_code(self, db, seed):
        limiter = RateLimiter(max_attempts=5, window_seconds=60)
        now = utcnow()
        token = issue(db, seed, now, max_uses=10)

        for _ in range(5):
            with pytest.raises(NotFoundError):
                validate(db, limiter, uuid.uuid4().hex, seed.students[0], rate_limit_key="10.0.0.9")

        # Même un code valide est refusé : le limiteur passe avant la recherche
        with pytest.raises(TooManyRequestsError):
            validate(db, limiter, token.code, seed.students[0], now=now, rate_limit_key="10.0.0.9")

        assert token_row(db, token.id).used_count == 0

    def test_ip_du_corps_ignoree_par_le_limiteur(self, db, seed):
        """Changer d'ip_address à chaque tentative n'ouvre pas de nouvelle fenêtre."""
        limiter = RateLimiter(max_attempts=5, window_seconds=60)

        for i in range(5):
            with pytest.raises(NotFoundError):
                validate(db, limiter, "inconnu", seed.students[0], ip_address=f"1.2.3.{i}")

        with pytest.raises(TooManyRequestsError):
            validate(db, limiter, "inconnu", seed.students[0], ip_address="1.2.3.99")

    def test_cle_serveur_partagee_entre_utilisateurs(self, db, seed):
        """Une même adresse observée est limitée quel que soit le user_id soumis."""
        limiter = RateLimiter(max_attempts=5, window_seconds=60)

        for user_id in seed.students + [seed.outsider]:
            with pytest.raises(NotFoundError):
                validate(db, limiter, "inconnu", user_id, rate_limit_key="10.0.0.7")

        with pytest.raises(TooManyRequestsError):
            validate(db, limiter, "inconnu", seed.no_profile, rate_limit_key="10.0.0.7")

    def test_identifiant_utilisateur_si_pas_d_ip(self, db, seed):
        limiter = RateLimiter(max_attempts=5, window_seconds=60)

        for _ in range(5):
            with pytest.raises(NotFoundError):
                validate(db, limiter, "inconnu", seed.students[1])

        with pytest.raises(TooManyRequestsError):
            validate(db, limiter, "inconnu", seed.students[1])

        # Un autre utilisateur n'est pas affecté
        with pytest.raises(NotFoundError):
            validate(db, limiter, "inconnu", seed.students[2])

    def test_code_vide_ne_consomme_pas_de_tentative(self, db, seed):
        limiter = RateLimiter(max_attempts=1, window_seconds=60)

        with pytest.raises(BadRequestError):
            validate(db, limiter, "", seed.students[0], ip_address="10.0.0.3")

        with pytest.raises(NotFoundError):
            validate(db, limiter, "inconnu", seed.students[0], ip_address="10.0.0.3")
