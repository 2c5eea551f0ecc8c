from typing import Generator

from fastapi import status
from sqlalchemy.orm import Session, sessionmaker

ORGANIZATION = {
    "legal_name": "Safe Haven Women's Society",
    "organization_type": "Non-Profit Society",
    "society_registration_number": "S0012345",
    "service_address_street": "100 Main Street",
    "service_address_city": "Edmonton",
    "service_address_postal_code": "T5J 0A1",
    "mailing_address_street": "PO Box 100",
    "mailing_address_city": "Edmonton",
    "mailing_address_postal_code": "T5J 0A1",
    "primary_contact_name": "Jane Doe",
    "primary_contact_email": "jdoe@safehaven.org",
    "primary_contact_phone": "(780) 555-0100",
}

PART_A_FIELDS = {
    "program_name": "WomensShelter",
    "service_description": "Emergency shelter for women and children fleeing violence.",
    "current_bed_count": 24,
    "current_unit_count": 8,
}

PART_B_FIELDS = {
    "program_name": "SecondStageShelter",
    "service_description": "Second-stage housing with counselling.",
    "proposed_location": "Grande Prairie",
    "target_population": "Women and children leaving emergency shelters",
    "community_need_justification": "The region has no second-stage shelter. " * 5,
    "expansion_type": "NewShelter",
    "proposed_bed_count": 12,
}


class MockResponse:
    def __init__(self, status_code, json_data):
        self.status_code = status_code
        self.json_data = json_data

    def json(self):
        return self.json_data


def assert_ok(response):
    assert response.status_code == status.HTTP_200_OK, f"{response.status_code}: {response.json()}"


def get_test_db(engine):
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

    def inner() -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
        finally:
            session.close()

    return inner
