import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from sqlalchemy.orm import Session
from sqlmodel import col

from app import auth, dependencies, models, serializers, util, workflow
from app.db import get_db, rollback_on_error
from app.i18n import _
from app.settings import app_settings
from app.util import ErrorCode

logger = logging.getLogger(__name__)

router = APIRouter()

DRAFT_ONLY = "Documents can only be uploaded to or deleted from Draft applications."


@router.post(
    "/applications/{id}/documents",
    tags=[util.Tags.applications],
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    file: UploadFile = File(...),
    document_type_code: str | None = Form(None),
    session: Session = Depends(get_db),
    principal: auth.Principal = Depends(dependencies.get_applicant),
    application: models.Application = Depends(dependencies.require_draft(DRAFT_ONLY)),
) -> serializers.DocumentResponse:
    """
    Upload a supporting document to a DRAFT application.

    Accepts PDF, JPEG, PNG and DOCX files, within the per-file and per-application size limits.
    """
    content, file_type = util.validate_file(file)

    with rollback_on_error(session):
        application = workflow.lock_draft(session, application.id, application.organization_id)

        if models.Document.total_size(session, application.id) + len(content) > util.MAX_APPLICATION_SIZE:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": ErrorCode.TOTAL_SIZE_EXCEEDED,
                    "message": _(
                        "Total application documents exceed %(size)s MB limit",
                        size=app_settings.max_application_size_mb,
                    ),
                },
            )

        if document_type_code and not models.DocumentType.first_by(session, "code", document_type_code):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": ErrorCode.INVALID_DOC_TYPE,
                    "message": _("Invalid document type: %(code)s", code=document_type_code),
                },
            )

        document = models.Document.create(
            session,
            application_id=application.id,
            file_name=file.filename or "document",
            file_type=file_type,
            file_size_bytes=len(content),
            document_type_code=document_type_code or None,
            uploaded_by_user_id=principal.id,
            file=content,
        )

        session.commit()
        logger.info("Document %s uploaded to application %s", document.id, application.reference_number)
        return serializers.DocumentResponse(
            document=models.DocumentRead.model_validate(document, from_attributes=True),
            detail=_("Document uploaded successfully."),
        )


@router.get(
    "/applications/{id}/documents",
    tags=[util.Tags.applications],
)
async def list_documents(
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.get_visible_application),
) -> list[models.DocumentRead]:
    return (
        session.query(models.Document)
        .filter(models.Document.application_id == application.id)
        .order_by(col(models.Document.uploaded_at).desc(), col(models.Document.id).desc())
        .all()
    )


@router.get(
    "/applications/{id}/documents/{document_id}/download",
    tags=[util.Tags.applications],
)
async def download_document(
    document_id: int,
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.get_visible_application),
) -> Response:
    """
    Stream the document's content.

    :return: The file as an attachment.
    """
    document = _get_document(session, application, document_id)
    return Response(
        content=document.file,
        media_type=util.MEDIA_TYPES.get(document.file_type, "application/octet-stream"),
        headers={"Content-Disposition": f'attachment; filename="{document.file_name}"'},
    )


@router.delete(
    "/applications/{id}/documents/{document_id}",
    tags=[util.Tags.applications],
)
async def delete_document(
    document_id: int,
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.require_draft(DRAFT_ONLY)),
) -> serializers.ResponseBase:
    with rollback_on_error(session):
        application = workflow.lock_draft(session, application.id, application.organization_id)
        document = _get_document(session, application, document_id)
        session.delete(document)

        session.commit()
        return serializers.ResponseBase(detail=_("Document deleted successfully."))


def _get_document(session: Session, application: models.Application, document_id: int) -> models.Document:
    document = (
        session.query(models.Document)
        .filter(models.Document.id == document_id, models.Document.application_id == application.id)
        .first()
    )
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_("Document not found"))
    return document
