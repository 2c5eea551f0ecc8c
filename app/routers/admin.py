from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sqlmodel import col

from app import auth, dependencies, models, parsers, reports, serializers, util
from app.db import get_db, rollback_on_error
from app.routers.messages import mark_read, send_message
from app.util import ApplicationSortField, SortOrder

router = APIRouter()


@router.get(
    "/admin/applications",
    tags=[util.Tags.admin],
)
async def list_submitted_applications(
    page: int = Query(0, ge=0),
    page_size: int = Query(10, gt=0),
    sort_field: ApplicationSortField = Query(ApplicationSortField.SUBMITTED_AT),
    sort_order: SortOrder = Query("desc"),
    status: models.ApplicationStatus | None = None,
    search: str | None = None,
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> serializers.ApplicationListResponse:
    """
    Get a paginated list of applications that have left DRAFT, with their organizations' names.

    :param status: Filter by status.
    :param search: Filter by organization name or reference number (case-insensitive substring).
    :return: The paginated list of applications.
    """
    applications_query = models.Application.submitted_search(
        session, sort_field, sort_order, status=status, search_value=search
    )

    total_count = applications_query.count()

    applications = applications_query.limit(page_size).offset(page * page_size).all()

    return serializers.ApplicationListResponse(
        items=[application.to_read() for application in applications],
        count=total_count,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/admin/applications/{id}",
    tags=[util.Tags.admin],
)
async def get_submitted_application(
    application: models.Application = Depends(dependencies.get_submitted_application),
) -> models.ApplicationWithOrganization:
    return application.to_read()


@router.get(
    "/admin/applications/{id}/messages",
    tags=[util.Tags.admin],
)
async def list_application_messages(
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.get_submitted_application),
) -> list[serializers.MessageRead]:
    """
    Return the application's message thread in chronological order, and mark the applicant's messages as read.
    """
    with rollback_on_error(session):
        mark_read(session, application, models.ActorRole.APPLICANT)
        session.commit()

    return [
        serializers.MessageRead.model_validate(message, from_attributes=True)
        for message in models.Message.thread(session, application.id)
    ]


@router.post(
    "/admin/applications/{id}/messages",
    tags=[util.Tags.admin],
    status_code=status.HTTP_201_CREATED,
)
async def create_application_message(
    payload: parsers.MessageCreate,
    session: Session = Depends(get_db),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    application: models.Application = Depends(dependencies.get_submitted_application),
) -> serializers.MessageRead:
    with rollback_on_error(session):
        message = send_message(session, application, reviewer, models.ActorRole.REVIEWER, payload)

        session.commit()
        return serializers.MessageRead.model_validate(message, from_attributes=True)


@router.get(
    "/admin/applications/{id}/notes",
    tags=[util.Tags.admin],
)
async def list_internal_notes(
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.get_submitted_application),
) -> list[serializers.InternalNoteRead]:
    """
    Return the reviewers' internal notes on the application, newest first. Applicants never see these.
    """
    return [
        serializers.InternalNoteRead.model_validate(note, from_attributes=True)
        for note in models.InternalNote.filter_by(session, "application_id", application.id).order_by(
            col(models.InternalNote.created_at).desc(), col(models.InternalNote.id).desc()
        )
    ]


@router.post(
    "/admin/applications/{id}/notes",
    tags=[util.Tags.admin],
    status_code=status.HTTP_201_CREATED,
)
async def create_internal_note(
    payload: parsers.InternalNoteCreate,
    session: Session = Depends(get_db),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    application: models.Application = Depends(dependencies.get_submitted_application),
) -> serializers.InternalNoteRead:
    with rollback_on_error(session):
        note = models.InternalNote.create(
            session,
            application_id=application.id,
            author_user_id=reviewer.id,
            note_text=payload.note_text,
        )

        session.commit()
        return serializers.InternalNoteRead.model_validate(note, from_attributes=True)


@router.get(
    "/admin/dashboard",
    tags=[util.Tags.admin],
)
async def get_dashboard(
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> serializers.DashboardResponse:
    """
    Return totals, status, regional and fiscal-year distributions, and KPIs of applications that have left DRAFT.
    """
    return reports.dashboard(session)
