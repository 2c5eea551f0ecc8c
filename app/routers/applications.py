import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlmodel import col

from app import auth, dependencies, models, parsers, serializers, util, workflow
from app.db import get_db, rollback_on_error
from app.exceptions import DraftValidationError
from app.i18n import _

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/applications",
    tags=[util.Tags.applications],
    status_code=status.HTTP_201_CREATED,
)
async def create_application(
    session: Session = Depends(get_db),
    organization: models.Organization = Depends(dependencies.get_organization),
) -> serializers.ApplicationResponse:
    """
    Create a DRAFT application for the applicant's organization, in the current fiscal year.

    :return: The new application.
    """
    with rollback_on_error(session):
        application = models.Application.create(
            session,
            organization_id=organization.id,
            reference_number=models.Application.generate_reference_number(session),
            fiscal_year_code=models.FiscalYear.current_code(session),
        )

        session.commit()
        logger.info("Application %s created by organization %s", application.reference_number, organization.id)
        return serializers.ApplicationResponse(
            application=application.to_read(),
            detail=_("Application %(reference)s created in Draft status.", reference=application.reference_number),
        )


@router.get(
    "/applications",
    tags=[util.Tags.applications],
)
async def list_applications(
    session: Session = Depends(get_db),
    organization: models.Organization = Depends(dependencies.get_organization),
) -> list[models.ApplicationRead]:
    """
    List the applicant's organization's applications, newest first.
    """
    return (
        models.Application.owned(session, organization.id)
        .order_by(col(models.Application.created_at).desc(), col(models.Application.id).desc())
        .all()
    )


@router.get(
    "/applications/{id}",
    tags=[util.Tags.applications],
)
async def get_application(
    application: models.Application = Depends(dependencies.get_owned_application),
) -> models.ApplicationWithBudget:
    return application.to_read()


@router.patch(
    "/applications/{id}/type",
    tags=[util.Tags.applications],
)
async def set_application_type(
    payload: parsers.ApplicationSetType,
    session: Session = Depends(get_db),
    application: models.Application = Depends(
        dependencies.require_draft("The application type can only be changed on Draft applications.")
    ),
) -> serializers.ApplicationResponse:
    """
    Select the application type (Part A or Part B), which determines the draft fields and the submission
    requirements.
    """
    with rollback_on_error(session):
        application = workflow.lock_draft(session, application.id, application.organization_id)
        application.update(session, application_type=payload.application_type, updated_at=models.utcnow())

        session.commit()
        return serializers.ApplicationResponse(
            application=application.to_read(),
            detail=_("Application type updated."),
        )


@router.patch(
    "/applications/{id}",
    tags=[util.Tags.applications],
)
async def save_draft(
    payload: parsers.DraftUpdate,
    session: Session = Depends(get_db),
    application: models.Application = Depends(
        dependencies.require_draft("Only Draft applications can be edited.")
    ),
) -> serializers.ApplicationResponse:
    """
    Save draft fields. Fields that are omitted or null are left unchanged. If ``budget_lines`` is set, it replaces
    all budget lines and the total funding requested is recomputed.

    Only the fields of the application's type are saved, and only their format is validated. Required fields are
    checked on submission.
    """
    if application.application_type is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_("Please select an application type before saving."),
        )

    if errors := payload.errors(application.application_type):
        raise DraftValidationError(errors)

    with rollback_on_error(session):
        application = workflow.lock_draft(session, application.id, application.organization_id)
        application.update(session, **payload.changes(application.application_type), updated_at=models.utcnow())
        if (lines := payload.budget_line_data()) is not None:
            application.replace_budget_lines(session, lines)

        session.commit()
        return serializers.ApplicationResponse(application=application.to_read(), detail=_("Draft saved."))


@router.post(
    "/applications/{id}/submit",
    tags=[util.Tags.applications],
)
async def submit_application(
    id: int,
    payload: parsers.ApplicationSubmit,
    session: Session = Depends(get_db),
    principal: auth.Principal = Depends(dependencies.get_applicant),
    organization: models.Organization = Depends(dependencies.get_organization),
) -> serializers.ApplicationResponse:
    """
    Submit a DRAFT application.

    The declaration must be accepted, and all fields required by the application type must be populated, with at
    least one budget line. Missing fields are reported together.

    Changes application status from "Draft" to "Submitted".
    """
    if not payload.declaration_accepted:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_("You must accept the declaration before submitting your application."),
        )

    with rollback_on_error(session):
        try:
            application = workflow.submit_application(session, id, organization.id, principal)
        except SQLAlchemyError:
            logger.exception("Error submitting application %s", id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=_(
                    "We were unable to submit your application due to a system error. "
                    "All your data has been saved. Please try again."
                ),
            )

        return serializers.ApplicationResponse(
            application=application.to_read(),
            detail=_(
                "Application %(reference)s has been submitted successfully.",
                reference=application.reference_number,
            ),
        )


@router.patch(
    "/applications/{id}/status",
    tags=[util.Tags.applications],
)
async def update_application_status(
    id: int,
    payload: parsers.StatusUpdate,
    session: Session = Depends(get_db),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
) -> models.ApplicationWithBudget:
    """
    Move an application to another status, as a reviewer.

    The transition must be allowed from the application's current status. Otherwise, the response is 409 and lists
    the valid next statuses.
    """
    with rollback_on_error(session):
        application = workflow.update_status(session, id, payload.new_status, reviewer, payload.note)
        return application.to_read()


@router.get(
    "/applications/{id}/history",
    tags=[util.Tags.applications],
)
async def get_application_history(
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.get_visible_application),
) -> list[serializers.StatusHistoryRead]:
    """
    Return the application's status history in chronological order.
    """
    return [
        serializers.StatusHistoryRead.model_validate(row, from_attributes=True)
        for row in models.StatusHistory.for_application(session, application.id)
    ]

