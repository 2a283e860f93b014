"""
Erreurs métier renvoyées aux clients de l'API.

Chaque sous-classe porte le code HTTP correspondant ; main.py enregistre
un handler unique qui les traduit en réponse JSON {"detail": ...}.
"""


class AppError(Exception):
    """Erreur attendue, destinée à l'appelant (jamais absorbée)."""
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class BadRequestError(AppError):
    """Entrée mal formée (code manquant, ordre des dates invalide...)."""
    status_code = 400


class ForbiddenError(AppError):
    """Utilisateur non inscrit au cours du token."""
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Pointage déjà enregistré pour ce couple (token, utilisateur)."""
    status_code = 409


class GoneError(AppError):
    """Token existant mais inutilisable (expiré, pas encore valide, quota atteint, statut)."""
    status_code = 410


class TooManyRequestsError(AppError):
    status_code = 429
