import csv
import io
import os.path
from enum import Enum, StrEnum
from typing import Any, Iterable, TypeVar

from email_validator import EmailNotValidError, validate_email
from fastapi import HTTPException, Response, UploadFile, status
from sqlalchemy.orm import Session

from app import models
from app.i18n import _
from app.settings import app_settings

T = TypeVar("T")
MAX_FILE_SIZE = app_settings.max_file_size_mb * 1024 * 1024  # MB in bytes
MAX_APPLICATION_SIZE = app_settings.max_application_size_mb * 1024 * 1024  # MB in bytes

# Browsers disagree on some MIME types, so the extension is accepted as a fallback.
MIME_TYPES = {
    "application/pdf": models.FileType.PDF,
    "image/jpeg": models.FileType.JPEG,
    "image/png": models.FileType.PNG,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": models.FileType.DOCX,
}
EXTENSIONS = {
    ".pdf": models.FileType.PDF,
    ".jpg": models.FileType.JPEG,
    ".jpeg": models.FileType.JPEG,
    ".png": models.FileType.PNG,
    ".docx": models.FileType.DOCX,
}
MEDIA_TYPES = {file_type: media_type for media_type, file_type in MIME_TYPES.items()}


# https://fastapi.tiangolo.com/tutorial/path-operation-configuration/#tags-with-enums
class Tags(Enum):
    applications = "applications"
    admin = "admin"
    authentication = "authentication"
    meta = "meta"
    organizations = "organizations"
    reports = "reports"
    shelters = "shelters"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


class ApplicationSortField(StrEnum):
    """The columns by which reviewers may sort the list of applications."""

    SUBMITTED_AT = "application.submitted_at"
    CREATED_AT = "application.created_at"
    UPDATED_AT = "application.updated_at"
    REFERENCE_NUMBER = "application.reference_number"
    STATUS = "application.status"
    APPLICATION_TYPE = "application.application_type"
    TOTAL_FUNDING_REQUESTED = "application.total_funding_requested"
    LEGAL_NAME = "organization.legal_name"


class ErrorCode(StrEnum):
    NOT_DRAFT = "NOT_DRAFT"
    INVALID_FORMAT = "INVALID_FORMAT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    TOTAL_SIZE_EXCEEDED = "TOTAL_SIZE_EXCEEDED"
    INVALID_DOC_TYPE = "INVALID_DOC_TYPE"


def get_object_or_404(session: Session, model: type[T], field: str, value: Any) -> T:
    obj = model.first_by(session, field, value)  # type: ignore[attr-defined]
    if not obj:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_("%(model_name)s not found", model_name=model.__name__),
        )
    return obj


def is_valid_email(email: str) -> bool:
    """
    Check if the given email is valid.

    :param email: The email address to validate.
    :return: True if the email is valid, False otherwise.
    """
    try:
        return bool(validate_email(email, allow_smtputf8=False, check_deliverability=False))
    except EmailNotValidError:
        return False


def get_file_type(file: UploadFile) -> models.FileType:
    """
    Return the type of the uploaded file, from its content type or, failing that, its extension.

    :raise HTTPException: If the file is not a PDF, JPEG, PNG or DOCX file.
    """
    if file.content_type in MIME_TYPES:
        return MIME_TYPES[file.content_type]

    extension = os.path.splitext(file.filename or "")[1].lower()
    if extension in EXTENSIONS:
        return EXTENSIONS[extension]

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": ErrorCode.INVALID_FORMAT, "message": _("Accepted formats: PDF, JPEG, JPG, PNG, DOCX")},
    )


def validate_file(file: UploadFile) -> tuple[bytes, models.FileType]:
    """
    Validate the uploaded file.

    This function checks whether the file has an allowed format and whether its size is below the maximum allowed size.

    :param file: The uploaded file.
    :return: The file's content and type.
    :raise HTTPException: If the file format is not allowed or if the file size is too large.
    """
    file_type = get_file_type(file)
    content = file.file.read()
    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": ErrorCode.FILE_TOO_LARGE,
                "message": _("File exceeds maximum size of %(size)s MB", size=app_settings.max_file_size_mb),
            },
        )
    return content, file_type


def csv_response(filename: str, header: list[str], rows: Iterable[Iterable[Any]]) -> Response:
    """Return a CSV attachment."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    writer.writerows(rows)

    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
