"""
Limiteur de tentatives en mémoire, à fenêtre fixe par identifiant.

Protège POST /api/v1/qr/validate contre la recherche de codes par force brute.
Moteur : bibliothèque limits (celle de Flask-Limiter), stockage MemoryStorage.
La fenêtre d'un identifiant démarre à sa première tentative et n'est pas
prolongée par les refus ; le stockage purge lui-même les fenêtres échues.

Une instance par processus : les compteurs ne sont pas partagés entre
workers et sont perdus au redémarrage (au pire un relâchement bref du
throttling).
"""

import logging

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from attendqr.config import settings

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, max_attempts: int = 5, window_seconds: int = 60):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(max_attempts, window_seconds)
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def hit(self, identifier: str) -> bool:
        """
        Comptabilise une tentative pour `identifier`.
        Retourne False si la limite de la fenêtre courante est déjà atteinte.
        """
        return self._strategy.hit(self._item, "qr-validate", identifier)

    def reset(self) -> None:
        self._storage.reset()
        logger.debug("Rate limiter : compteurs réinitialisés")


rate_limiter = RateLimiter(
    max_attempts=settings.RATE_LIMIT_MAX_ATTEMPTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)


def get_rate_limiter() -> RateLimiter:
    """Dépendance FastAPI, surchargée dans les tests."""
    return rate_limiter
