import re
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from app import util
from app.models import (
    ApplicationStatus,
    ApplicationType,
    BudgetCategory,
    ExpansionType,
    OrganizationType,
    ProgramType,
)

POSTAL_CODE_RE = re.compile(r"^[A-Z]\d[A-Z]\s?\d[A-Z]\d$", re.IGNORECASE)
PHONE_RE = re.compile(r"^\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

#: Draft fields that each application type saves, in addition to the budget lines.
SHARED_DRAFT_FIELDS = ("program_name", "service_description", "proposed_unit_count", "partnership_details")
TYPE_DRAFT_FIELDS = {
    ApplicationType.PART_A_BASE_RENEWAL: (
        "current_bed_count",
        "current_unit_count",
        "cost_pressures_description",
    ),
    ApplicationType.PART_B_NEW_OR_EXPANSION: (
        "proposed_location",
        "target_population",
        "community_need_justification",
        "existing_resources_description",
        "dv_data_reference",
        "expansion_type",
        "proposed_bed_count",
        "proposed_open_date",
        "has_federal_funding",
        "federal_agency_name",
        "federal_funding_amount",
        "federal_funding_expiry_date",
    ),
}

# The maximum lengths of free-text draft fields.
MAX_LENGTHS = {
    "service_description": (5000, "Service description must be 5,000 characters or less"),
    "cost_pressures_description": (3000, "Cost pressures description must be 3,000 characters or less"),
    "partnership_details": (3000, "Partnership details must be 3,000 characters or less"),
    "proposed_location": (200, "Geographic area must be 200 characters or less"),
    "target_population": (1000, "Population served must be 1,000 characters or less"),
    "existing_resources_description": (2000, "Existing resources description must be 2,000 characters or less"),
    "dv_data_reference": (500, "Domestic violence data reference must be 500 characters or less"),
    "federal_agency_name": (200, "Federal agency name must be 200 characters or less"),
}

# The inclusive ranges of integer draft fields.
RANGES = {
    "current_bed_count": (0, 500, "Bed count must be an integer between 0 and 500"),
    "current_unit_count": (0, 500, "Unit count must be an integer between 0 and 500"),
    "proposed_unit_count": (0, 500, "Unit count must be an integer between 0 and 500"),
    "proposed_bed_count": (1, 200, "Requested bed count must be between 1 and 200"),
}


def _choices(enum: Any) -> str:
    return ", ".join(member.value for member in enum)


class OrganizationCreate(BaseModel):
    legal_name: str = Field(min_length=1, max_length=200)
    organization_type: OrganizationType
    society_registration_number: str | None = Field(default=None, max_length=50)
    registration_date: date | None = None

    service_address_street: str = Field(min_length=1, max_length=200)
    service_address_city: str = Field(min_length=1, max_length=100)
    service_address_province: str = "AB"
    service_address_postal_code: str

    mailing_address_street: str = Field(min_length=1, max_length=200)
    mailing_address_city: str = Field(min_length=1, max_length=100)
    mailing_address_province: str = "AB"
    mailing_address_postal_code: str

    primary_contact_name: str = Field(min_length=1, max_length=200)
    primary_contact_email: str
    primary_contact_phone: str

    zone_code: str | None = None

    @field_validator("legal_name", "service_address_street", "service_address_city", "primary_contact_name")
    @classmethod
    def strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("This field is required")
        return value

    @field_validator("service_address_postal_code", "mailing_address_postal_code")
    @classmethod
    def validate_postal_code(cls, value: str) -> str:
        value = value.strip().upper()
        if not POSTAL_CODE_RE.match(value):
            raise ValueError("Postal code must be in the format A1A 1A1")
        return value

    @field_validator("primary_contact_phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        value = value.strip()
        if not PHONE_RE.match(value):
            raise ValueError("Phone number must be a valid North American number, like (780) 555-0100")
        return value

    @field_validator("primary_contact_email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not util.is_valid_email(value):
            raise ValueError("Email address is not valid")
        return value

    @field_validator("service_address_province", "mailing_address_province")
    @classmethod
    def default_province(cls, value: str) -> str:
        return value.strip().upper() or "AB"


class ApplicationSetType(BaseModel):
    application_type: ApplicationType


class BudgetLineInput(BaseModel):
    category: str | None = None
    description: str | None = None
    annual_amount: Decimal | None = None


class DraftUpdate(BaseModel):
    """
    Draft fields of either application type. Fields that are not set are left unchanged.

    Enumerated and formatted fields are plain strings here, so that :meth:`errors` reports them alongside other
    problems.
    """

    program_name: str | None = None
    service_description: str | None = None
    proposed_unit_count: int | None = None
    partnership_details: str | None = None

    current_bed_count: int | None = None
    current_unit_count: int | None = None
    cost_pressures_description: str | None = None

    proposed_location: str | None = None
    target_population: str | None = None
    community_need_justification: str | None = None
    existing_resources_description: str | None = None
    dv_data_reference: str | None = None
    expansion_type: str | None = None
    proposed_bed_count: int | None = None
    proposed_open_date: str | None = None
    has_federal_funding: bool | None = None
    federal_agency_name: str | None = None
    federal_funding_amount: Decimal | None = None
    federal_funding_expiry_date: str | None = None

    budget_lines: list[BudgetLineInput] | None = None

    def fields_for(self, application_type: ApplicationType) -> tuple[str, ...]:
        return SHARED_DRAFT_FIELDS + TYPE_DRAFT_FIELDS[application_type]

    def errors(self, application_type: ApplicationType) -> dict[str, str]:
        """
        Return a message for each invalid field that applies to the application type. Required fields are not
        checked until submission.
        """
        errors = {}
        fields = self.fields_for(application_type)

        for field in fields:
            value = getattr(self, field)
            if value is None or value == "":
                continue

            if field in MAX_LENGTHS and len(value) > MAX_LENGTHS[field][0]:
                errors[field] = MAX_LENGTHS[field][1]
            elif field in RANGES and not RANGES[field][0] <= value <= RANGES[field][1]:
                errors[field] = RANGES[field][2]

        if self.program_name and self.program_name not in list(ProgramType):
            errors["program_name"] = f"Program type must be one of: {_choices(ProgramType)}"

        if application_type == ApplicationType.PART_B_NEW_OR_EXPANSION:
            if (value := self.community_need_justification) and not 100 <= len(value) <= 3000:
                errors["community_need_justification"] = (
                    "Need gap description must be between 100 and 3,000 characters"
                )
            if self.expansion_type and self.expansion_type not in list(ExpansionType):
                errors["expansion_type"] = f"Expansion type must be one of: {_choices(ExpansionType)}"
            for field in ("proposed_open_date", "federal_funding_expiry_date"):
                if (value := getattr(self, field)) and _parse_date(value) is None:
                    errors[field] = "Date must be a valid date (YYYY-MM-DD)"
            if self.federal_funding_amount is not None and self.federal_funding_amount < 0:
                errors["federal_funding_amount"] = "Federal funding amount must be a non-negative number"

        for i, line in enumerate(self.budget_lines or []):
            if line.category not in list(BudgetCategory):
                errors[f"budget_lines[{i}].category"] = f"Invalid category. Must be one of: {_choices(BudgetCategory)}"
            if line.description and len(line.description) > 200:
                errors[f"budget_lines[{i}].description"] = "Description must be 200 characters or less"
            if line.annual_amount is None or line.annual_amount < 0:
                errors[f"budget_lines[{i}].annual_amount"] = "Annual amount must be greater than or equal to zero"

        return errors

    def changes(self, application_type: ApplicationType) -> dict[str, Any]:
        """Return the set, non-null fields that apply to the application type, converted to model values."""
        data = {}
        for field in self.fields_for(application_type):
            value = getattr(self, field)
            if field not in self.model_fields_set or value is None:
                continue
            if field in CONVERTERS:
                if not value:
                    continue
                value = CONVERTERS[field](value)
            data[field] = value
        return data

    def budget_line_data(self) -> list[dict[str, Any]] | None:
        if self.budget_lines is None:
            return None
        return [line.model_dump() for line in self.budget_lines]


def _parse_date(value: str) -> date | None:
    if not DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


# Draft fields that arrive as strings, and that are skipped if empty.
CONVERTERS = {
    "program_name": ProgramType,
    "expansion_type": ExpansionType,
    "proposed_open_date": _parse_date,
    "federal_funding_expiry_date": _parse_date,
}


class ApplicationSubmit(BaseModel):
    declaration_accepted: bool = False


class StatusUpdate(BaseModel):
    new_status: ApplicationStatus
    note: str | None = Field(default=None, max_length=2000)


class MessageCreate(BaseModel):
    subject: str | None = Field(default=None, max_length=300)
    body: str = Field(min_length=1, max_length=10000)


class InternalNoteCreate(BaseModel):
    note_text: str = Field(min_length=1, max_length=10000)


class FundedShelterCreate(BaseModel):
    shelter_name: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    zone_code: str
    service_type_code: str
    bed_count: int | None = Field(default=None, ge=0)
    unit_count: int | None = Field(default=None, ge=0)
    funding_amount: Decimal | None = Field(default=None, ge=0)
    is_active: bool = True


class FundedShelterUpdate(BaseModel):
    shelter_name: str | None = Field(default=None, min_length=1, max_length=200)
    city: str | None = Field(default=None, min_length=1, max_length=100)
    zone_code: str | None = None
    service_type_code: str | None = None
    bed_count: int | None = Field(default=None, ge=0)
    unit_count: int | None = Field(default=None, ge=0)
    funding_amount: Decimal | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ContactCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str
    subject: str = Field(min_length=1, max_length=300)
    message: str = Field(min_length=1, max_length=5000)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not util.is_valid_email(value):
            raise ValueError("Email address is not valid")
        return value


class MockLogin(BaseModel):
    user_index: int = 0
    email: str | None = None
    display_name: str | None = None
    external_account_id: str | None = None
