import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app import auth, models
from app.db import get_db
from app.main import app as main_app
from tests import ORGANIZATION, PART_A_FIELDS, PART_B_FIELDS, get_test_db


def _header(principal: auth.Principal) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth.create_session_token(principal)}"}


@pytest.fixture(autouse=True)
def create_and_drop_database(engine):
    models.SQLModel.metadata.create_all(engine)
    yield
    models.SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="session")
def engine():
    if url := os.getenv("TEST_DATABASE_URL"):
        return create_engine(url)
    # One in-memory database, shared by the test session and the client's sessions.
    return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


@pytest.fixture(scope="session")
def app() -> Generator[FastAPI, Any, None]:
    yield main_app


@pytest.fixture
def client(app: FastAPI, engine) -> Generator[TestClient, Any, None]:
    app.dependency_overrides[get_db] = get_test_db(engine)

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def session(engine) -> Generator[Session, Any, None]:
    yield from get_test_db(engine)()


@pytest.fixture
def applicant():
    return auth.MockAuthenticator.users[0]


@pytest.fixture
def other_applicant():
    return auth.MockAuthenticator.users[1]


@pytest.fixture
def reviewer():
    return auth.MockAuthenticator.users[2]


@pytest.fixture
def applicant_header(applicant):
    return _header(applicant)


@pytest.fixture
def other_applicant_header(other_applicant):
    return _header(other_applicant)


@pytest.fixture
def reviewer_header(reviewer):
    return _header(reviewer)


@pytest.fixture
def zone(session):
    zone = models.Zone.create(session, code="EDMONTON", name="Edmonton Zone", sort_order=2)
    session.commit()
    return zone


@pytest.fixture
def other_zone(session):
    zone = models.Zone.create(session, code="CALGARY", name="Calgary Zone", sort_order=4)
    session.commit()
    return zone


@pytest.fixture
def fiscal_year(session):
    fiscal_year = models.FiscalYear.create(session, code="2026-27", is_current=True)
    session.commit()
    return fiscal_year


@pytest.fixture
def document_type(session):
    document_type = models.DocumentType.create(session, code="BUDGET", name="Detailed Budget")
    session.commit()
    return document_type


@pytest.fixture
def service_type(session):
    service_type = models.ServiceType.create(session, code="EMERGENCY", name="Emergency Shelter")
    session.commit()
    return service_type


@pytest.fixture
def organization(session, applicant, zone):
    organization = models.Organization.create(
        session,
        **{**ORGANIZATION, "organization_type": models.OrganizationType.NON_PROFIT_SOCIETY},
        external_account_id=applicant.external_account_id,
        zone_code=zone.code,
    )
    session.commit()
    return organization


@pytest.fixture
def other_organization(session, other_applicant, other_zone):
    organization = models.Organization.create(
        session,
        **{
            **ORGANIZATION,
            "legal_name": "New Start Housing Society",
            "organization_type": models.OrganizationType.REGISTERED_CHARITY,
        },
        external_account_id=other_applicant.external_account_id,
        zone_code=other_zone.code,
    )
    session.commit()
    return organization


@pytest.fixture
def draft_application(session, organization, fiscal_year):
    application = models.Application.create(
        session,
        organization_id=organization.id,
        reference_number="WSP-2026-0001",
        fiscal_year_code=fiscal_year.code,
    )
    session.commit()
    return application


@pytest.fixture
def part_a_application(session, organization, fiscal_year):
    """A Part A draft with every field that submission requires."""
    application = models.Application.create(
        session,
        organization_id=organization.id,
        reference_number="WSP-2026-0002",
        fiscal_year_code=fiscal_year.code,
        application_type=models.ApplicationType.PART_A_BASE_RENEWAL,
        **{**PART_A_FIELDS, "program_name": models.ProgramType.WOMENS_SHELTER},
    )
    application.replace_budget_lines(
        session, [{"category": models.BudgetCategory.SALARIES, "annual_amount": Decimal("150000.00")}]
    )
    session.commit()
    return application


@pytest.fixture
def part_b_application(session, organization, fiscal_year):
    """A Part B draft with every field that submission requires."""
    application = models.Application.create(
        session,
        organization_id=organization.id,
        reference_number="WSP-2026-0003",
        fiscal_year_code=fiscal_year.code,
        application_type=models.ApplicationType.PART_B_NEW_OR_EXPANSION,
        **{
            **PART_B_FIELDS,
            "program_name": models.ProgramType.SECOND_STAGE_SHELTER,
            "expansion_type": models.ExpansionType.NEW_SHELTER,
        },
    )
    application.replace_budget_lines(
        session,
        [
            {"category": models.BudgetCategory.FACILITY_RENTAL, "annual_amount": Decimal("60000.00")},
            {"category": models.BudgetCategory.UTILITIES, "annual_amount": Decimal("12000.00")},
        ],
    )
    session.commit()
    return application


@pytest.fixture
def submitted_application(session, part_a_application, applicant):
    part_a_application.stage_as_submitted()
    models.StatusHistory.create(
        session,
        application_id=part_a_application.id,
        from_status=models.ApplicationStatus.DRAFT,
        to_status=models.ApplicationStatus.SUBMITTED,
        changed_by_user_id=applicant.id,
        changed_by_role=models.ActorRole.APPLICANT,
    )
    session.commit()
    return part_a_application


@pytest.fixture
def other_submitted_application(session, other_organization, fiscal_year):
    application = models.Application.create(
        session,
        organization_id=other_organization.id,
        reference_number="WSP-2026-0004",
        fiscal_year_code=fiscal_year.code,
        application_type=models.ApplicationType.PART_B_NEW_OR_EXPANSION,
        status=models.ApplicationStatus.UNDER_REVIEW,
        submitted_at=datetime(2026, 5, 1, tzinfo=timezone.utc),
        total_funding_requested=Decimal("50000.00"),
    )
    session.commit()
    return application
