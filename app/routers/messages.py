from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app import auth, dependencies, models, parsers, serializers, util
from app.db import get_db, rollback_on_error
from app.i18n import _

router = APIRouter()


def mark_read(session: Session, application: models.Application, sender_role: models.ActorRole) -> None:
    """Mark the messages sent by the other party as read."""
    session.query(models.Message).filter(
        models.Message.application_id == application.id,
        models.Message.sender_role == sender_role,
        models.Message.is_read == False,  # noqa: E712
    ).update({"is_read": True}, synchronize_session=False)


def send_message(
    session: Session,
    application: models.Application,
    principal: auth.Principal,
    role: models.ActorRole,
    payload: parsers.MessageCreate,
) -> models.Message:
    """
    Add a message to the application's thread.

    :raises HTTPException: 400 if the application is DRAFT.
    """
    if application.is_draft:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_("Messages can only be sent on submitted applications."),
        )

    return models.Message.create(
        session,
        application_id=application.id,
        sender_user_id=principal.id,
        sender_role=role,
        subject=payload.subject or None,
        body=payload.body,
    )


@router.get(
    "/applications/{id}/messages",
    tags=[util.Tags.applications],
)
async def list_messages(
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.get_owned_application),
) -> list[serializers.MessageRead]:
    """
    Return the application's message thread in chronological order, and mark the reviewer's messages as read.
    """
    with rollback_on_error(session):
        mark_read(session, application, models.ActorRole.REVIEWER)
        session.commit()

    return [
        serializers.MessageRead.model_validate(message, from_attributes=True)
        for message in models.Message.thread(session, application.id)
    ]


@router.post(
    "/applications/{id}/messages",
    tags=[util.Tags.applications],
    status_code=status.HTTP_201_CREATED,
)
async def create_message(
    payload: parsers.MessageCreate,
    session: Session = Depends(get_db),
    principal: auth.Principal = Depends(dependencies.get_applicant),
    application: models.Application = Depends(dependencies.get_owned_application),
) -> serializers.MessageRead:
    with rollback_on_error(session):
        message = send_message(session, application, principal, models.ActorRole.APPLICANT, payload)

        session.commit()
        return serializers.MessageRead.model_validate(message, from_attributes=True)
