from datetime import datetime, timezone
from decimal import Decimal

from fastapi import status

from app import models, parsers
from app.i18n import _
from tests import ORGANIZATION, PART_A_FIELDS, PART_B_FIELDS, assert_ok

DECLARATION = {"declaration_accepted": True}


def test_register_organization(client, applicant_header, zone):
    response = client.get("/organizations/me", headers=applicant_header)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"detail": _("Organization not registered")}

    response = client.post(
        "/organizations",
        json={**ORGANIZATION, "service_address_postal_code": "t5j0a1", "zone_code": zone.code},
        headers=applicant_header,
    )
    assert response.status_code == status.HTTP_201_CREATED, response.json()
    organization = response.json()["organization"]
    assert organization["external_account_id"] == "MA-ORG-10001"
    assert organization["service_address_postal_code"] == "T5J0A1"
    assert organization["service_address_province"] == "AB"

    response = client.get("/organizations/me", headers=applicant_header)
    assert_ok(response)
    assert response.json()["legal_name"] == ORGANIZATION["legal_name"]

    response = client.post("/organizations", json=ORGANIZATION, headers=applicant_header)
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json() == {"detail": _("An organization is already registered to this account")}


def test_register_organization_invalid(client, applicant_header, reviewer_header):
    response = client.post(
        "/organizations",
        json={**ORGANIZATION, "service_address_postal_code": "12345", "primary_contact_phone": "555"},
        headers=applicant_header,
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    fields = {error["loc"][-1] for error in response.json()["detail"]}
    assert fields == {"service_address_postal_code", "primary_contact_phone"}

    response = client.post("/organizations", json={**ORGANIZATION, "zone_code": "NOWHERE"}, headers=applicant_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND

    response = client.post("/organizations", json=ORGANIZATION, headers=reviewer_header)
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_create_application(client, applicant_header, organization, fiscal_year):
    response = client.post("/applications", headers=applicant_header)
    assert response.status_code == status.HTTP_201_CREATED, response.json()

    reference = f"WSP-{datetime.now(timezone.utc).year}-0001"
    assert response.json()["detail"] == _("Application %(reference)s created in Draft status.", reference=reference)
    application = response.json()["application"]
    assert application["reference_number"] == reference
    assert application["status"] == models.ApplicationStatus.DRAFT
    assert application["fiscal_year_code"] == fiscal_year.code
    assert application["application_type"] is None
    assert application["budget_lines"] == []

    response = client.post("/applications", headers=applicant_header)
    assert response.json()["application"]["reference_number"] == f"WSP-{datetime.now(timezone.utc).year}-0002"

    response = client.get("/applications", headers=applicant_header)
    assert_ok(response)
    assert [row["reference_number"] for row in response.json()] == [
        f"WSP-{datetime.now(timezone.utc).year}-0002",
        reference,
    ]


def test_create_application_unauthorized(client, applicant_header, reviewer_header):
    response = client.post("/applications")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {"detail": _("Not authenticated")}

    response = client.post("/applications", headers={"Authorization": "Bearer invalid"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = client.post("/applications", headers=reviewer_header)
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = client.post("/applications", headers=applicant_header)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"detail": _("Organization not registered")}


def test_get_application_other_organization(
    client, applicant_header, other_applicant_header, draft_application, other_organization
):
    response = client.get(f"/applications/{draft_application.id}", headers=applicant_header)
    assert_ok(response)
    assert response.json()["reference_number"] == draft_application.reference_number

    response = client.get(f"/applications/{draft_application.id}", headers=other_applicant_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"detail": _("Application not found")}

    response = client.get("/applications/999", headers=applicant_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_save_draft(client, session, applicant_header, draft_application):
    appid = draft_application.id

    response = client.patch(f"/applications/{appid}", json=PART_A_FIELDS, headers=applicant_header)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"detail": _("Please select an application type before saving.")}

    response = client.patch(
        f"/applications/{appid}/type", json={"application_type": "PART_A_BASE_RENEWAL"}, headers=applicant_header
    )
    assert_ok(response)
    assert response.json()["application"]["application_type"] == models.ApplicationType.PART_A_BASE_RENEWAL

    response = client.patch(
        f"/applications/{appid}",
        json={
            **PART_A_FIELDS,
            # Part B fields are ignored for Part A applications.
            "proposed_location": "Red Deer",
            "budget_lines": [
                {"category": "Salaries", "description": "Two counsellors", "annual_amount": "120000.50"},
                {"category": "Utilities", "annual_amount": 8000},
            ],
        },
        headers=applicant_header,
    )
    assert_ok(response)
    assert response.json()["detail"] == _("Draft saved.")
    application = response.json()["application"]
    assert application["program_name"] == models.ProgramType.WOMENS_SHELTER
    assert application["current_bed_count"] == 24
    assert application["proposed_location"] is None
    assert float(application["total_funding_requested"]) == 128000.50
    assert [(line["category"], line["sort_order"]) for line in application["budget_lines"]] == [
        ("Salaries", 0),
        ("Utilities", 1),
    ]

    # Omitted and null fields are unchanged. The budget lines are replaced.
    response = client.patch(
        f"/applications/{appid}",
        json={"current_bed_count": None, "budget_lines": [{"category": "Other", "annual_amount": 500}]},
        headers=applicant_header,
    )
    assert_ok(response)
    application = response.json()["application"]
    assert application["current_bed_count"] == 24
    assert application["service_description"] == PART_A_FIELDS["service_description"]
    assert float(application["total_funding_requested"]) == 500
    assert len(application["budget_lines"]) == 1
    assert session.query(models.BudgetLineItem).count() == 1

    # The budget lines are unchanged if omitted.
    response = client.patch(f"/applications/{appid}", json={"current_unit_count": 9}, headers=applicant_header)
    assert_ok(response)
    assert len(response.json()["application"]["budget_lines"]) == 1


def test_save_draft_invalid(client, session, applicant_header, draft_application):
    draft_application.application_type = models.ApplicationType.PART_B_NEW_OR_EXPANSION
    session.commit()

    response = client.patch(
        f"/applications/{draft_application.id}",
        json={
            "program_name": "Hotel",
            "proposed_location": "x" * 201,
            "community_need_justification": "Too short",
            "expansion_type": "Castle",
            "proposed_bed_count": 0,
            "proposed_open_date": "2027-02-30",
            "budget_lines": [{"category": "Snacks", "annual_amount": -1}],
        },
        headers=applicant_header,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == _("Validation failed")
    assert set(response.json()["errors"]) == {
        "program_name",
        "proposed_location",
        "community_need_justification",
        "expansion_type",
        "proposed_bed_count",
        "proposed_open_date",
        "budget_lines[0].category",
        "budget_lines[0].annual_amount",
    }
    assert response.json()["errors"]["proposed_bed_count"] == "Requested bed count must be between 1 and 200"

    session.expire_all()
    assert models.Application.get(session, draft_application.id).program_name is None


def test_save_draft_part_b(client, session, applicant_header, draft_application):
    draft_application.application_type = models.ApplicationType.PART_B_NEW_OR_EXPANSION
    session.commit()

    response = client.patch(
        f"/applications/{draft_application.id}",
        json={
            **PART_B_FIELDS,
            "proposed_open_date": "2027-04-01",
            "has_federal_funding": True,
            "federal_agency_name": "CMHC",
            "federal_funding_amount": "25000",
        },
        headers=applicant_header,
    )
    assert_ok(response)
    application = response.json()["application"]
    assert application["expansion_type"] == models.ExpansionType.NEW_SHELTER
    assert application["proposed_open_date"] == "2027-04-01"
    assert application["has_federal_funding"] is True


def test_save_draft_submitted_meanwhile(monkeypatch, client, session, applicant_header, part_a_application):
    errors = parsers.DraftUpdate.errors

    # The application is submitted after the Draft check passes, but before the draft is written.
    def submit_meanwhile(self, application_type):
        part_a_application.stage_as_submitted()
        session.commit()
        return errors(self, application_type)

    monkeypatch.setattr(parsers.DraftUpdate, "errors", submit_meanwhile)

    response = client.patch(
        f"/applications/{part_a_application.id}",
        json={"service_description": "Changed", "budget_lines": [{"category": "Other", "annual_amount": 1}]},
        headers=applicant_header,
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"detail": _("Application not found or is not in Draft status.")}

    session.expire_all()
    application = models.Application.get(session, part_a_application.id)
    assert application.status == models.ApplicationStatus.SUBMITTED
    assert application.service_description == PART_A_FIELDS["service_description"]
    assert application.total_funding_requested == Decimal("150000")
    assert [line.category for line in application.budget_lines] == [models.BudgetCategory.SALARIES]


def test_submit(client, session, applicant_header, part_a_application):
    appid = part_a_application.id

    response = client.post(f"/applications/{appid}/submit", json={}, headers=applicant_header)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {"detail": _("You must accept the declaration before submitting your application.")}

    response = client.post(f"/applications/{appid}/submit", json=DECLARATION, headers=applicant_header)
    assert_ok(response)
    assert response.json()["detail"] == _(
        "Application %(reference)s has been submitted successfully.", reference=part_a_application.reference_number
    )
    application = response.json()["application"]
    assert application["status"] == models.ApplicationStatus.SUBMITTED
    assert application["declaration_accepted"] is True
    assert application["submitted_at"] is not None

    response = client.post(f"/applications/{appid}/submit", json=DECLARATION, headers=applicant_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"detail": _("Application not found or is not in Draft status.")}

    # Draft fields are read-only after submission.
    response = client.patch(f"/applications/{appid}", json=PART_A_FIELDS, headers=applicant_header)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {
        "detail": {"code": "NOT_DRAFT", "message": _("Only Draft applications can be edited.")}
    }

    response = client.patch(
        f"/applications/{appid}/type", json={"application_type": "PART_B_NEW_OR_EXPANSION"}, headers=applicant_header
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["code"] == "NOT_DRAFT"


def test_submit_missing_fields(client, session, applicant_header, draft_application):
    response = client.post(
        f"/applications/{draft_application.id}/submit", json=DECLARATION, headers=applicant_header
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["missing_fields"] == [
        "application_type",
        "program_name",
        "service_description",
        "budget_lines",
    ]

    session.expire_all()
    assert models.Application.get(session, draft_application.id).status == models.ApplicationStatus.DRAFT
    assert session.query(models.StatusHistory).count() == 0


def test_submit_part_b_missing_fields(client, session, applicant_header, part_b_application):
    part_b_application.community_need_justification = None
    part_b_application.replace_budget_lines(session, [])
    session.commit()

    response = client.post(
        f"/applications/{part_b_application.id}/submit", json=DECLARATION, headers=applicant_header
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json() == {
        "detail": (
            "The following required fields are missing: Community need justification, At least one budget line item"
        ),
        "missing_fields": ["community_need_justification", "budget_lines"],
    }

    session.expire_all()
    assert models.Application.get(session, part_b_application.id).status == models.ApplicationStatus.DRAFT


def test_submit_other_organization(client, other_applicant_header, part_a_application, other_organization):
    response = client.post(
        f"/applications/{part_a_application.id}/submit",
        json=DECLARATION,
        headers=other_applicant_header,
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_update_status(client, session, reviewer_header, applicant_header, submitted_application):
    appid = submitted_application.id

    response = client.patch(
        f"/applications/{appid}/status",
        json={"new_status": "UnderReview", "note": "Assigned"},
        headers=reviewer_header,
    )
    assert_ok(response)
    assert response.json()["status"] == models.ApplicationStatus.UNDER_REVIEW

    response = client.patch(f"/applications/{appid}/status", json={"new_status": "Submitted"}, headers=reviewer_header)
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json() == {
        "detail": (
            "The status transition from UnderReview to Submitted is not permitted. "
            "Valid transitions from UnderReview are: MoreInfoRequired, Approved, Declined."
        ),
        "valid_transitions": ["MoreInfoRequired", "Approved", "Declined"],
    }

    response = client.patch(f"/applications/{appid}/status", json={"new_status": "Approved"}, headers=reviewer_header)
    assert_ok(response)

    response = client.patch(f"/applications/{appid}/status", json={"new_status": "Declined"}, headers=reviewer_header)
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["valid_transitions"] == []
    assert response.json()["detail"].endswith("none (terminal status).")

    response = client.get(f"/applications/{appid}/history", headers=applicant_header)
    assert_ok(response)
    assert [(row["from_status"], row["to_status"], row["changed_by_role"]) for row in response.json()] == [
        ("Draft", "Submitted", "Applicant"),
        ("Submitted", "UnderReview", "Reviewer"),
        ("UnderReview", "Approved", "Reviewer"),
    ]
    assert response.json()[1]["note"] == "Assigned"


def test_update_status_invalid(client, reviewer_header, applicant_header, draft_application, submitted_application):
    response = client.patch(
        f"/applications/{submitted_application.id}/status", json={"new_status": "Pending"}, headers=reviewer_header
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    response = client.patch("/applications/999/status", json={"new_status": "UnderReview"}, headers=reviewer_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"detail": _("Application not found")}

    response = client.patch(
        f"/applications/{submitted_application.id}/status",
        json={"new_status": "UnderReview"},
        headers=applicant_header,
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json() == {"detail": _("Insufficient permissions")}

    response = client.patch(
        f"/applications/{draft_application.id}/status", json={"new_status": "UnderReview"}, headers=reviewer_header
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["valid_transitions"] == []


def test_history_visibility(
    client, applicant_header, other_applicant_header, reviewer_header, submitted_application, other_organization
):
    response = client.get(f"/applications/{submitted_application.id}/history", headers=reviewer_header)
    assert_ok(response)
    assert len(response.json()) == 1

    response = client.get(f"/applications/{submitted_application.id}/history", headers=other_applicant_header)
    assert response.status_code == status.HTTP_404_NOT_FOUND

    response = client.get(f"/applications/{submitted_application.id}/history")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_full_lifecycle(client, applicant_header, reviewer_header, organization, fiscal_year):
    response = client.post("/applications", headers=applicant_header)
    appid = response.json()["application"]["id"]

    client.patch(
        f"/applications/{appid}/type", json={"application_type": "PART_B_NEW_OR_EXPANSION"}, headers=applicant_header
    )
    response = client.patch(
        f"/applications/{appid}",
        json={**PART_B_FIELDS, "budget_lines": [{"category": "Salaries", "annual_amount": 90000}]},
        headers=applicant_header,
    )
    assert_ok(response)

    response = client.post(f"/applications/{appid}/submit", json=DECLARATION, headers=applicant_header)
    assert_ok(response)

    for new_status in ("UnderReview", "MoreInfoRequired", "UnderReview", "Approved"):
        response = client.patch(
            f"/applications/{appid}/status", json={"new_status": new_status}, headers=reviewer_header
        )
        assert_ok(response)

    response = client.get(f"/applications/{appid}/history", headers=reviewer_header)
    assert [row["to_status"] for row in response.json()] == [
        "Submitted",
        "UnderReview",
        "MoreInfoRequired",
        "UnderReview",
        "Approved",
    ]
