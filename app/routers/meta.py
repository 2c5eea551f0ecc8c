import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlmodel import col

from app import models, parsers, serializers, util
from app.db import get_db, rollback_on_error
from app.i18n import _
from app.settings import app_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/meta",
    tags=[util.Tags.meta],
)
async def get_constants() -> dict[str, list[dict[str, str]]]:
    """
    Get the keys and localized descriptions of constants, where a constant can be:

        - ApplicationStatus
        - ApplicationType
        - BudgetCategory
        - ExpansionType
        - FileType
        - OrganizationType
        - ProgramType

    :return: A dict of constants with their keys and localized values.
    """
    constants = {}
    for domain in (
        "ApplicationStatus",
        "ApplicationType",
        "BudgetCategory",
        "ExpansionType",
        "FileType",
        "OrganizationType",
        "ProgramType",
    ):
        constants[domain] = [{"label": _(name), "value": name} for name in getattr(models, domain)]
    return constants


@router.get(
    "/meta/reference-data",
    tags=[util.Tags.meta],
)
async def get_reference_data(session: Session = Depends(get_db)) -> dict[str, list[dict[str, str]]]:
    """
    Get the codes and names of document types, service types and fiscal years.
    """
    current = models.FiscalYear.current_code(session)
    return {
        "DocumentType": [
            {"label": row.name, "value": row.code}
            for row in session.query(models.DocumentType).order_by(col(models.DocumentType.name))
        ],
        "ServiceType": [
            {"label": row.name, "value": row.code}
            for row in session.query(models.ServiceType).order_by(col(models.ServiceType.name))
        ],
        "FiscalYear": [
            {"label": row.code, "value": row.code, "current": "true" if row.code == current else "false"}
            for row in session.query(models.FiscalYear).order_by(col(models.FiscalYear.code))
        ],
    }


@router.get(
    "/zones",
    tags=[util.Tags.meta],
)
async def list_zones(session: Session = Depends(get_db)) -> list[models.Zone]:
    return session.query(models.Zone).order_by(col(models.Zone.sort_order), col(models.Zone.name)).all()


@router.get(
    "/faqs",
    tags=[util.Tags.meta],
)
async def list_faqs(session: Session = Depends(get_db)) -> list[models.Faq]:
    """List active FAQs in display order."""
    return (
        session.query(models.Faq)
        .filter(models.Faq.is_active == True)  # noqa: E712
        .order_by(col(models.Faq.sort_order), col(models.Faq.id))
        .all()
    )


@router.post(
    "/contact",
    tags=[util.Tags.meta],
    status_code=status.HTTP_201_CREATED,
)
async def create_contact_inquiry(
    payload: parsers.ContactCreate,
    request: Request,
    session: Session = Depends(get_db),
) -> serializers.ResponseBase:
    """
    Record an inquiry from the public contact form.
    """
    with rollback_on_error(session):
        inquiry = models.ContactInquiry.create(
            session,
            sender_name=payload.name,
            sender_email=payload.email,
            subject=payload.subject,
            message=payload.message,
            ip_address=request.client.host if request.client else None,
        )

        session.commit()
        logger.info("Contact inquiry %s received", inquiry.id)
        return serializers.ResponseBase(detail=_("Thank you for your message. We will respond as soon as possible."))


@router.get(
    "/health",
    tags=[util.Tags.meta],
)
async def health(session: Session = Depends(get_db)) -> dict[str, str]:
    """Check that the database is reachable."""
    session.execute(text("SELECT 1"))
    return {"status": "ok"}


@router.get(
    "/info",
    tags=[util.Tags.meta],
)
async def info() -> dict[str, str]:
    return {"name": "shelter-grants", "version": app_settings.version, "environment": app_settings.environment}
