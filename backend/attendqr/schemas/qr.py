"""
Schémas Pydantic pour les QR tokens de présence et leurs pointages.
"""

import uuid
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

QRStatus = Literal["ACTIVE", "EXPIRED", "USED"]
SortOrder = Literal["asc", "desc"]


# ------------------------------------------------------------------
# Entrées
# ------------------------------------------------------------------

class QRTokenCreate(BaseModel):
    """Corps de requête pour générer un QR token."""
    course_id: uuid.UUID
    teacher_id: uuid.UUID
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    max_uses: Optional[int] = None  # Borné dans [1, QR_MAX_USES_LIMIT] par le service
    location: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)


class QRValidationRequest(BaseModel):
    """
    Corps de requête pour pointer avec un QR code.
    Le code peut être envoyé sous `token` ou `code` (les deux noms circulent côté clients).
    """
    token: Optional[str] = None
    code: Optional[str] = None
    user_id: uuid.UUID
    location: Optional[str] = Field(default=None, max_length=255)
    ip_address: Optional[str] = Field(default=None, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=500)

    @field_validator("token", "code")
    @classmethod
    def strip_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v

    @property
    def submitted_code(self) -> str:
        return self.token or self.code or ""


class QRTokenStatusUpdate(BaseModel):
    status: QRStatus


class QRTokenFilters(BaseModel):
    """Filtres fermés pour la liste des tokens (clé inconnue → 422)."""
    model_config = ConfigDict(extra="forbid")

    course_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    status: Optional[QRStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: Literal["created_at", "valid_from", "valid_until", "used_count", "status"] = "created_at"
    sort_order: SortOrder = "desc"


class QRCheckInFilters(BaseModel):
    """Filtres fermés pour la liste des pointages (clé inconnue → 422)."""
    model_config = ConfigDict(extra="forbid")

    token_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    course_id: Optional[uuid.UUID] = None
    is_valid: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: Literal["check_in_time", "created_at"] = "check_in_time"
    sort_order: SortOrder = "desc"


class QRScopeFilters(BaseModel):
    """Périmètre commun à l'expiration en masse et aux statistiques."""
    model_config = ConfigDict(extra="forbid")

    course_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


# ------------------------------------------------------------------
# Sorties
# ------------------------------------------------------------------

class CourseSummary(BaseModel):
    id: uuid.UUID
    title: str
    code: str

    model_config = {"from_attributes": True}


class TeacherSummary(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: Optional[str]
    email: Optional[str]

    model_config = {"from_attributes": True}


class QRTokenResponse(BaseModel):
    id: uuid.UUID
    code: str
    course_id: uuid.UUID
    teacher_id: uuid.UUID
    valid_from: datetime
    valid_until: datetime
    max_uses: int
    used_count: int
    status: str
    location: Optional[str]
    description: Optional[str]
    created_at: datetime
    course: Optional[CourseSummary] = None
    teacher: Optional[TeacherSummary] = None

    model_config = {"from_attributes": True}


class QRCheckInResponse(BaseModel):
    id: uuid.UUID
    token_id: uuid.UUID
    user_id: uuid.UUID
    check_in_time: datetime
    location: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    is_valid: bool

    model_config = {"from_attributes": True}


class AttendanceResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    course_id: uuid.UUID
    date: date
    status: str
    qr_token_id: Optional[uuid.UUID]
    check_in_time: Optional[datetime]

    model_config = {"from_attributes": True}


class QRValidationResponse(BaseModel):
    """Résultat d'un pointage accepté. attendance est None si le registre n'a pas pu être mis à jour."""
    is_valid: bool
    message: str
    token: QRTokenResponse
    check_in: QRCheckInResponse
    attendance: Optional[AttendanceResponse] = None


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class QRTokenPage(BaseModel):
    data: List[QRTokenResponse]
    meta: PageMeta


class QRCheckInPage(BaseModel):
    data: List[QRCheckInResponse]
    meta: PageMeta


class QRExpireResult(BaseModel):
    count: int


class QRTodayStats(BaseModel):
    tokens_generated: int
    check_ins: int
    unique_users: int


class QRStatistics(BaseModel):
    total_tokens: int
    active_tokens: int
    expired_tokens: int
    used_tokens: int
    total_check_ins: int
    valid_check_ins: int
    invalid_check_ins: int
    today: QRTodayStats
