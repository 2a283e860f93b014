"""
Planificateur APScheduler pour l'entretien périodique du module QR.

Expiration des tokens ACTIVE dont valid_until est dépassé : la validation les
refuse déjà, le balayage garde les statuts et statistiques cohérents.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from attendqr.config import settings
from attendqr.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _expire_elapsed_tokens_scheduled() -> None:
    """
    Tâche planifiée : ACTIVE → EXPIRED pour les tokens arrivés à échéance.
    Import local pour éviter les imports circulaires.
    """
    from attendqr.services.qr_service import expire_elapsed_tokens

    db = SessionLocal()
    try:
        expire_elapsed_tokens(db)
    except Exception as exc:
        db.rollback()
        logger.error("Erreur lors de l'expiration automatique des QR tokens : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _expire_elapsed_tokens_scheduled,
        trigger="interval",
        minutes=settings.TOKEN_EXPIRY_SWEEP_MINUTES,
        id="qr_token_expiry_sweep",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré : expiration des tokens toutes les %d min.",
        settings.TOKEN_EXPIRY_SWEEP_MINUTES,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
