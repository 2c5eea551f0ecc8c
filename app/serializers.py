from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from app import auth, models


class ResponseBase(BaseModel):
    detail: str


class ApplicationResponse(ResponseBase):
    application: models.ApplicationWithBudget


class OrganizationResponse(ResponseBase):
    organization: models.OrganizationRead


class DocumentResponse(ResponseBase):
    document: models.DocumentRead


# Abstract
class BasePagination(BaseModel):
    count: int
    page: int
    page_size: int


class ApplicationListResponse(BasePagination):
    items: list[models.ApplicationWithOrganization]


class StatusHistoryRead(BaseModel):
    id: int
    from_status: models.ApplicationStatus | None = None
    to_status: models.ApplicationStatus
    changed_by_user_id: str
    changed_by_role: models.ActorRole
    note: str | None = None
    changed_at: datetime


class MessageRead(BaseModel):
    id: int
    application_id: int
    sender_user_id: str
    sender_role: models.ActorRole
    subject: str | None = None
    body: str
    is_read: bool
    sent_at: datetime


class InternalNoteRead(BaseModel):
    id: int
    application_id: int
    author_user_id: str
    note_text: str
    created_at: datetime


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: auth.Principal


class AuthStatusResponse(BaseModel):
    driver: str
    configured: bool
    authenticated: bool
    user: auth.Principal | None = None


class StatusCount(BaseModel):
    status: models.ApplicationStatus
    count: int


class TypeTotal(BaseModel):
    application_type: models.ApplicationType | None
    count: int
    total_requested: Decimal


class ZoneTotal(BaseModel):
    zone_code: str
    zone_name: str
    count: int
    total_requested: Decimal


class FiscalYearTotal(BaseModel):
    fiscal_year_code: str
    count: int
    total_requested: Decimal


class DashboardSummary(BaseModel):
    total_applications: int
    total_funding_requested: Decimal
    average_request_amount: Decimal


class Kpis(BaseModel):
    #: Days from submission to a decision, rounded to one decimal place. None if no application is decided.
    avg_processing_days: float | None
    #: The percentage of decided applications that are approved, rounded. 0 if no application is decided.
    approval_rate: int
    total_approved_funding: Decimal


class DashboardResponse(BaseModel):
    summary: DashboardSummary
    status_distribution: list[StatusCount]
    regional_distribution: list[ZoneTotal]
    fiscal_year_trends: list[FiscalYearTotal]
    kpis: Kpis


class CostPressureRow(BaseModel):
    fiscal_year_code: str
    zone_code: str
    application_type: models.ApplicationType | None
    total_requested: Decimal
    allocated_amount: Decimal
    #: The amount requested in excess of the amount allocated. Negative if less is requested.
    pressure: Decimal


class CostPressureReport(BaseModel):
    total_applications: int
    total_funding_requested: Decimal
    by_type: list[TypeTotal]
    by_zone: list[ZoneTotal]
    by_fiscal_year: list[FiscalYearTotal]
    cost_pressure: list[CostPressureRow]


class RegionalRow(ZoneTotal):
    approved_count: int
    declined_count: int
    approval_rate: int
    avg_request_amount: Decimal


class RegionalReport(BaseModel):
    total_applications: int
    total_funding_requested: Decimal
    zones: list[RegionalRow]


class FiscalYearRow(FiscalYearTotal):
    approved_count: int
    declined_count: int
    approval_rate: int
    total_approved_funding: Decimal


class FiscalYearReport(BaseModel):
    total_applications: int
    total_funding_requested: Decimal
    fiscal_years: list[FiscalYearRow]
