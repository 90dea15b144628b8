from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Any
from datetime import datetime

from app.domain.statuses import (
    CardStatus,
    ClinicStatus,
    CodeType,
    GenerationMode,
    ReassignmentPolicy,
    BatchStatus,
)


# ============================================
# Clinic Schemas
# ============================================

class ClinicCreate(BaseModel):
    clinic_name: str = Field(..., min_length=1, max_length=200)
    clinic_code: str = Field(..., pattern=r'^[A-Za-z0-9]{3,10}$')
    region_code: Optional[str] = Field(default=None, pattern=r'^[A-Za-z0-9]{2,3}$')


class ClinicResponse(BaseModel):
    id: str
    clinic_name: str
    clinic_code: str
    region_code: Optional[str] = None
    status: ClinicStatus = ClinicStatus.ACTIVE
    created_at: Optional[datetime] = None


class ClinicCreated(BaseModel):
    clinic: ClinicResponse
    perks_mirrored: int = 0


# ============================================
# Batch Schemas
# ============================================

class BatchCreate(BaseModel):
    total_cards: int = Field(..., ge=1)
    mode: GenerationMode = GenerationMode.AUTO
    batch_number: Optional[str] = None
    location_prefix: Optional[str] = None
    custom_format: Optional[str] = None
    passcode_location: Optional[str] = None
    range_start: Optional[int] = Field(default=None, ge=1)
    range_end: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.mode is GenerationMode.RANGE:
            if self.range_start is None or self.range_end is None:
                raise ValueError("range_start and range_end are required in range mode")
            if self.range_end - self.range_start + 1 != self.total_cards:
                raise ValueError("total_cards must equal range_end - range_start + 1")
        return self


class BatchResponse(BaseModel):
    id: str
    batch_number: str
    total_cards: int
    cards_generated: int = 0
    batch_status: BatchStatus = BatchStatus.GENERATING
    generation_method: GenerationMode = GenerationMode.AUTO
    batch_metadata: dict = {}
    created_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class BatchStatsResponse(BaseModel):
    batch_id: str
    batch_number: str
    total_cards: int
    cards_generated: int
    missing: int
    by_status: dict[str, int] = {}


# ============================================
# Card Schemas
# ============================================

class CardResponse(BaseModel):
    id: str
    card_number: int
    control_number: str
    control_number_v2: str
    unified_control_number: Optional[str] = None
    printed_control_number: Optional[str] = None
    location_code: Optional[str] = None
    clinic_code: Optional[str] = None
    status: CardStatus
    assigned_clinic_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    batch_id: Optional[str] = None
    migration_version: int = 3


class CardAssign(BaseModel):
    clinic_id: str
    policy: Optional[ReassignmentPolicy] = None


class RangeAssign(BaseModel):
    clinic_id: str
    start: int = Field(..., ge=1)
    end: int = Field(..., ge=1)
    policy: Optional[ReassignmentPolicy] = None
    strict: bool = False

    @model_validator(mode="after")
    def check_bounds(self):
        if self.end < self.start:
            raise ValueError("end must be greater than or equal to start")
        return self


class RangeAssignmentResponse(BaseModel):
    clinic_id: str
    start: int
    end: int
    expected: int
    found: int
    assigned: int
    unchanged: int
    reassigned: int
    skipped: List[int] = []
    missing: List[int] = []
    not_assignable: List[int] = []
    complete: bool


class CardActivate(BaseModel):
    location_code: Optional[str] = Field(default=None, pattern=r'^[A-Za-z0-9]{2,3}$')
    clinic_code: Optional[str] = Field(default=None, pattern=r'^[A-Za-z0-9]{3,10}$')


class CardReset(BaseModel):
    reason: Optional[str] = None


class CardCodesUpdate(BaseModel):
    control_number: Optional[str] = None
    passcode: Optional[str] = None


class CodeNormalizeRequest(BaseModel):
    value: str
    code_type: CodeType


class CodeNormalizeResponse(BaseModel):
    value: str
    code_type: CodeType
    normalized: str


# ============================================
# Perk Schemas
# ============================================

class PerkTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    perk_type: str = Field(..., pattern=r'^[a-z0-9_]{2,50}$')
    description: Optional[str] = None
    category: Optional[str] = None
    default_value: float = Field(default=0, ge=0)
    is_active: bool = True
    is_default: bool = False


class PerkTemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    default_value: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class PerkTemplateResponse(BaseModel):
    id: str
    name: str
    perk_type: str
    description: Optional[str] = None
    category: Optional[str] = None
    default_value: float = 0
    is_active: bool = True
    is_default: bool = False
    is_system_default: bool = False
    created_at: Optional[datetime] = None


class MirrorResponse(BaseModel):
    template_id: Optional[str] = None
    clinic_id: Optional[str] = None
    created: int
    already_present: int


class PerkTemplateCreated(BaseModel):
    template: PerkTemplateResponse
    mirror: Optional[MirrorResponse] = None


class CustomizationUpdate(BaseModel):
    custom_name: Optional[str] = None
    custom_description: Optional[str] = None
    custom_value: Optional[float] = Field(default=None, ge=0)
    is_enabled: Optional[bool] = None
    requires_appointment: Optional[bool] = None
    max_redemptions_per_card: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class CustomizationResponse(BaseModel):
    id: str
    clinic_id: str
    perk_template_id: str
    custom_name: Optional[str] = None
    custom_description: Optional[str] = None
    custom_value: Optional[float] = None
    is_enabled: bool = True
    requires_appointment: bool = False
    max_redemptions_per_card: int = 1
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class CardPerkResponse(BaseModel):
    id: str
    card_id: str
    perk_type: str
    perk_value: float = 0
    claimed: bool = False
    claimed_at: Optional[datetime] = None
    claimed_by_clinic_id: Optional[str] = None


# ============================================
# History Schemas
# ============================================

class HistoryEntry(BaseModel):
    id: str
    card_id: str
    kind: str  # "assignment" or "code"
    action: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    performed_by: str
    performed_by_type: str
    created_at: Optional[datetime] = None


# ============================================
# Version Sync Schemas
# ============================================

class SystemVersionResponse(BaseModel):
    component: str
    version_number: int
    change_description: Optional[str] = None
    updated_at: Optional[datetime] = None


class UpdateNotification(BaseModel):
    component: str
    old_version: int
    new_version: int
    description: Optional[str] = None
    detected_at: datetime


# ============================================
# Draft Schemas
# ============================================

class DraftSave(BaseModel):
    form_data: dict
    metadata: dict = {}


class DraftResponse(BaseModel):
    component_name: str
    form_data: dict
    metadata: dict = {}
    last_saved: Optional[datetime] = None
    expires_at: Optional[datetime] = None


# ============================================
# Public / Dashboard Schemas
# ============================================

class CardLookupRequest(BaseModel):
    control_number: str = Field(..., min_length=1, max_length=40)
    passcode: str = Field(..., min_length=1, max_length=20)


class CardLookupResponse(BaseModel):
    control_number: str
    status: CardStatus
    clinic_name: Optional[str] = None
    expires_at: Optional[datetime] = None
    perks: List[CardPerkResponse] = []


class DashboardResponse(BaseModel):
    clinics: Optional[int] = None
    active_clinics: Optional[int] = None
    batches: Optional[int] = None
    cards_total: int
    cards_by_status: dict[str, int]
    perks_claimed: int
    perks_unclaimed: int
