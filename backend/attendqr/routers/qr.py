"""
Router pour les QR codes de présence : émission, pointage, consultation et administration.

Pas de try/except par route : les services lèvent des erreurs métier typées
(attendqr.errors, une sous-classe par code HTTP : 400, 403, 404, 409, 410,
429) que le handler global déclaré dans main.py traduit en {"detail": ...}.
"""

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from attendqr.database import get_db
from attendqr.schemas.qr import (
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
    QRTokenStatusUpdate,
    QRValidationRequest,
    QRValidationResponse,
)
from attendqr.services import qr_service
from attendqr.services.rate_limiter import RateLimiter, get_rate_limiter

router = APIRouter(prefix="/api/v1/qr", tags=["QR codes"])


@router.post("/generate", response_model=QRTokenResponse, status_code=201,
             summary="Générer un QR token de présence")
def generate_token(data: QRTokenCreate, db: Session = Depends(get_db)):
    """
    Génère un QR token pour un cours, valable sur une fenêtre bornée
    (30 min par défaut, 24 h au maximum) et pour un nombre d'usages limité.

    Retourne 404 si le cours ou l'enseignant est introuvable,
    400 si valid_until n'est pas postérieur à valid_from.
    """
    return qr_service.issue_token(db, data)


@router.post("/validate", response_model=QRValidationResponse,
             summary="Pointer avec un QR code")
def validate_token(
    data: QRValidationRequest,
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Valide le code scanné et enregistre le pointage de l'utilisateur.

    Le limiteur compte les tentatives par adresse du client HTTP (par user_id
    si elle est inconnue) : l'ip_address du corps n'est qu'une trace d'audit,
    reprise de la requête si elle n'est pas fournie, comme le User-Agent.
    Codes d'erreur : 400 (code manquant), 429 (trop de tentatives),
    404 (code inconnu), 410 (token expiré / pas encore valide / quota atteint),
    403 (non inscrit au cours), 409 (déjà pointé).
    """
    client_host = request.client.host if request.client is not None else None
    updates = {}
    if data.ip_address is None and client_host:
        updates["ip_address"] = client_host
    if data.user_agent is None and request.headers.get("user-agent"):
        updates["user_agent"] = request.headers["user-agent"][:500]
    if updates:
        data = data.model_copy(update=updates)
    return qr_service.validate_token(db, data, limiter, rate_limit_key=client_host)


@router.get("", response_model=QRTokenPage, summary="Lister les QR tokens")
def list_tokens(filters: Annotated[QRTokenFilters, Query()], db: Session = Depends(get_db)):
    """Liste paginée des tokens filtrée par cours, enseignant, statut et date de création."""
    return qr_service.list_tokens(db, filters)


@router.get("/check-ins", response_model=QRCheckInPage, summary="Lister les pointages")
def list_check_ins(filters: Annotated[QRCheckInFilters, Query()], db: Session = Depends(get_db)):
    """Liste paginée des pointages filtrée par token, utilisateur, cours, validité et date."""
    return qr_service.list_check_ins(db, filters)


@router.get("/check-ins/{check_in_id}", response_model=QRCheckInResponse,
            summary="Détail d'un pointage")
def get_check_in(check_in_id: uuid.UUID, db: Session = Depends(get_db)):
    return qr_service.get_check_in(db, check_in_id)


@router.delete("/check-ins/{check_in_id}", response_model=QRCheckInResponse,
               summary="Supprimer un pointage")
def delete_check_in(check_in_id: uuid.UUID, db: Session = Depends(get_db)):
    return qr_service.delete_check_in(db, check_in_id)


@router.post("/expire", response_model=QRExpireResult, summary="Expirer des QR tokens")
def expire_tokens(scope: Optional[QRScopeFilters] = None, db: Session = Depends(get_db)):
    """
    Passe à EXPIRED tous les tokens ACTIVE correspondant au périmètre (tous si corps vide).
    Retourne le nombre de tokens expirés.
    """
    return qr_service.expire_tokens(db, scope)


@router.get("/statistics", response_model=QRStatistics, summary="Statistiques d'usage des QR codes")
def get_statistics(filters: Annotated[QRScopeFilters, Query()], db: Session = Depends(get_db)):
    return qr_service.get_statistics(db, filters)


@router.get("/{token_id}", response_model=QRTokenResponse, summary="Détail d'un QR token")
def get_token(token_id: uuid.UUID, db: Session = Depends(get_db)):
    return qr_service.get_token(db, token_id)


@router.get("/{token_id}/qr.png", summary="Image PNG du QR code",
            response_class=Response, responses={200: {"content": {"image/png": {}}}})
def get_token_image(token_id: uuid.UUID, db: Session = Depends(get_db)):
    """Retourne l'image QR encodant le code du token (à projeter en classe)."""
    png = qr_service.render_token_png(db, token_id)
    return Response(content=png, media_type="image/png")


@router.patch("/{token_id}/status", response_model=QRTokenResponse,
              summary="Modifier le statut d'un QR token")
def update_token_status(token_id: uuid.UUID, data: QRTokenStatusUpdate, db: Session = Depends(get_db)):
    return qr_service.update_token_status(db, token_id, data.status)


@router.delete("/{token_id}", response_model=QRTokenResponse, summary="Supprimer un QR token")
def delete_token(token_id: uuid.UUID, db: Session = Depends(get_db)):
    """Supprime un token. Retourne 400 si des pointages y font référence."""
    return qr_service.delete_token(db, token_id)
