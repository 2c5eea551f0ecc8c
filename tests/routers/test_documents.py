from fastapi import status

from app import models, util
from app.i18n import _
from tests import assert_ok

PDF = b"%PDF-1.4 test document"


def _upload(client, appid, headers, filename="budget.pdf", content=PDF, content_type="application/pdf", **data):
    return client.post(
        f"/applications/{appid}/documents",
        files={"file": (filename, content, content_type)},
        data=data,
        headers=headers,
    )


def test_upload_document(client, applicant_header, reviewer_header, draft_application, document_type):
    appid = draft_application.id

    response = _upload(client, appid, applicant_header, document_type_code=document_type.code)
    assert response.status_code == status.HTTP_201_CREATED, response.json()
    document = response.json()["document"]
    assert document["file_name"] == "budget.pdf"
    assert document["file_type"] == "PDF"
    assert document["file_size_bytes"] == len(PDF)
    assert document["document_type_code"] == "BUDGET"
    assert "file" not in document

    # The extension is used if the content type is generic.
    response = _upload(client, appid, applicant_header, filename="photo.JPG", content_type="application/octet-stream")
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["document"]["file_type"] == "JPEG"

    response = client.get(f"/applications/{appid}/documents", headers=applicant_header)
    assert_ok(response)
    assert {row["file_name"] for row in response.json()} == {"budget.pdf", "photo.JPG"}

    response = client.get(f"/applications/{appid}/documents/{document['id']}/download", headers=reviewer_header)
    assert_ok(response)
    assert response.content == PDF
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["content-disposition"] == 'attachment; filename="budget.pdf"'

    response = client.delete(f"/applications/{appid}/documents/{document['id']}", headers=applicant_header)
    assert_ok(response)
    assert response.json() == {"detail": _("Document deleted successfully.")}

    response = client.get(f"/applications/{appid}/documents/{document['id']}/download", headers=applicant_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"detail": _("Document not found")}


def test_upload_document_invalid(client, applicant_header, draft_application):
    appid = draft_application.id

    response = _upload(client, appid, applicant_header, filename="notes.txt", content_type="text/plain")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["code"] == "INVALID_FORMAT"

    response = _upload(client, appid, applicant_header, document_type_code="UNKNOWN")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {
        "detail": {"code": "INVALID_DOC_TYPE", "message": _("Invalid document type: %(code)s", code="UNKNOWN")}
    }


def test_upload_document_size_limits(monkeypatch, client, applicant_header, draft_application):
    appid = draft_application.id

    monkeypatch.setattr(util, "MAX_FILE_SIZE", len(PDF) - 1)
    response = _upload(client, appid, applicant_header)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["code"] == "FILE_TOO_LARGE"

    monkeypatch.setattr(util, "MAX_FILE_SIZE", len(PDF))
    monkeypatch.setattr(util, "MAX_APPLICATION_SIZE", len(PDF) * 2)
    for _i in range(2):
        response = _upload(client, appid, applicant_header)
        assert response.status_code == status.HTTP_201_CREATED

    response = _upload(client, appid, applicant_header)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["code"] == "TOTAL_SIZE_EXCEEDED"


def test_documents_after_submission(client, applicant_header, other_applicant_header, submitted_application):
    appid = submitted_application.id

    response = _upload(client, appid, applicant_header)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {
        "detail": {
            "code": "NOT_DRAFT",
            "message": _("Documents can only be uploaded to or deleted from Draft applications."),
        }
    }

    response = client.get(f"/applications/{appid}/documents", headers=applicant_header)
    assert_ok(response)
    assert response.json() == []

    response = client.get(f"/applications/{appid}/documents", headers=other_applicant_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_upload_document_submitted_meanwhile(monkeypatch, client, session, applicant_header, draft_application):
    validate_file = util.validate_file

    # The application is submitted after the Draft check passes, but before the document is written.
    def submit_meanwhile(file):
        draft_application.stage_as_submitted()
        session.commit()
        return validate_file(file)

    monkeypatch.setattr(util, "validate_file", submit_meanwhile)

    response = _upload(client, draft_application.id, applicant_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"detail": _("Application not found or is not in Draft status.")}
    assert session.query(models.Document).count() == 0
