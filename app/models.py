import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any, Self

from sqlalchemy import Boolean, Column, DateTime, or_
from sqlalchemy.orm import Query, Session, joinedload
from sqlalchemy.sql import ColumnElement, func
from sqlmodel import Field, Relationship, SQLModel, col

from app.i18n import i
from app.settings import app_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_order_by(sort_field: str, sort_order: str, model: type[SQLModel] | None = None) -> Any:
    if "." in sort_field:
        model_name, field_name = sort_field.split(".", 1)
        column = getattr(getattr(sys.modules[__name__], MODEL_NAMES[model_name]), field_name)
    else:
        column = getattr(model, sort_field)
    return getattr(col(column), sort_order)()


# https://github.com/tiangolo/sqlmodel/issues/254
#
# The session.flush() calls are not strictly necessary. However, they can avoid errors like:
#
# >>> instance.related_id = related.id
# (related_id is set to None)
class ActiveRecordMixin:
    @classmethod
    def filter_by(cls, session: Session, field: str, value: Any) -> "Query[Self]":
        """
        Filter a model based on a field's value.

        :param session: The database session.
        :param field: The field.
        :param value: The field's value.
        :return: The query.
        """
        return session.query(cls).filter(getattr(cls, field) == value)

    @classmethod
    def first_by(cls, session: Session, field: str, value: Any) -> Self | None:
        """
        Get an existing instance based on a field's value.

        :param session: The database session.
        :param field: The field.
        :param value: The field's value.
        :return: The existing instance if found, otherwise None.
        """
        return cls.filter_by(session, field, value).first()

    @classmethod
    def get(cls, session: Session, id: int) -> Self:
        """
        Get an existing instance by its ID. Raise an exception if not found.

        :param session: The database session.
        :param id: The ID.
        :return: The existing instance if found.
        """
        return cls.filter_by(session, "id", id).one()

    @classmethod
    def create(cls, session: Session, **data: Any) -> Self:
        """
        Insert a new instance into the database.

        :param session: The database session.
        :param data: The initial instance data.
        :return: The inserted instance.
        """
        obj = cls(**data)
        session.add(obj)
        session.flush()
        return obj

    def update(self, session: Session, **data: Any) -> Self:
        """
        Update an existing instance in the database.

        :param session: The database session.
        :param data: The updated instance data.
        :return: The updated instance.
        """
        for key, value in data.items():
            setattr(self, key, value)

        session.add(self)  # not strictly necessary
        session.flush()
        return self

    @classmethod
    def create_or_update(cls, session: Session, filters: list[bool | ColumnElement[Boolean]], **data: Any) -> Self:
        obj: Self | None = session.query(cls).filter(*filters).first()
        if obj:
            return obj.update(session, **data)
        return cls.create(session, **data)


class ApplicationStatus(StrEnum):
    """
    An application status.

    The applicant moves an application from DRAFT to SUBMITTED (``/applications/{id}/submit``). From there, only a
    reviewer moves it (``/applications/{id}/status``):

    -  SUBMITTED → UNDER_REVIEW
    -  UNDER_REVIEW → MORE_INFO_REQUIRED → UNDER_REVIEW (→ …)
    -  UNDER_REVIEW → APPROVED
    -  UNDER_REVIEW → DECLINED

    .. seealso:: :data:`app.workflow.TRANSITIONS`
    """

    #: Editable by the applicant.
    DRAFT = i("Draft")
    #: Declared and submitted by the applicant.
    SUBMITTED = i("Submitted")
    #: Picked up by a reviewer.
    UNDER_REVIEW = i("UnderReview")
    #: The reviewer asked the applicant for more information, through the message thread.
    MORE_INFO_REQUIRED = i("MoreInfoRequired")
    #: Terminal.
    APPROVED = i("Approved")
    #: Terminal.
    DECLINED = i("Declined")


class ApplicationType(StrEnum):
    #: Part A: renewal of base operational funding.
    PART_A_BASE_RENEWAL = "PART_A_BASE_RENEWAL"
    #: Part B: a new shelter or an expansion.
    PART_B_NEW_OR_EXPANSION = "PART_B_NEW_OR_EXPANSION"


class ProgramType(StrEnum):
    WOMENS_SHELTER = i("WomensShelter")
    SECOND_STAGE_SHELTER = i("SecondStageShelter")


class ExpansionType(StrEnum):
    NEW_SHELTER = i("NewShelter")
    ADDITIONAL_BEDS = i("AdditionalBeds")
    SECOND_STAGE_EXPANSION = i("SecondStageExpansion")
    INCREASED_OPERATIONAL_FUNDING = i("IncreasedOperationalFunding")


class BudgetCategory(StrEnum):
    SALARIES = i("Salaries")
    BENEFITS = i("Benefits")
    FACILITY_RENTAL = i("FacilityRental")
    UTILITIES = i("Utilities")
    PROGRAM_SUPPLIES = i("ProgramSupplies")
    TRANSPORT = i("Transport")
    ADMINISTRATION = i("Administration")
    OTHER = i("Other")


class OrganizationType(StrEnum):
    NON_PROFIT_SOCIETY = i("Non-Profit Society")
    REGISTERED_CHARITY = i("Registered Charity")
    INDIGENOUS_ORGANIZATION = i("Indigenous Organization")
    OTHER = i("Other")


class FileType(StrEnum):
    PDF = "PDF"
    JPEG = "JPEG"
    PNG = "PNG"
    DOCX = "DOCX"


class Role(StrEnum):
    """A role claim carried by the authenticated principal."""

    #: Organization-side user, restricted to its own organization's applications.
    APPLICANT = "applicant"
    #: Government staff, who may change statuses and view all organizations' applications.
    REVIEWER = "reviewer"


class ActorRole(StrEnum):
    """The role in which a user acted, as recorded in status histories and message threads."""

    APPLICANT = "Applicant"
    REVIEWER = "Reviewer"


# Reference data


class Zone(SQLModel, ActiveRecordMixin, table=True):
    code: str = Field(primary_key=True)
    name: str
    sort_order: int = Field(default=0)


class ServiceType(SQLModel, ActiveRecordMixin, table=True):
    __tablename__ = "service_type"

    code: str = Field(primary_key=True)
    name: str


class DocumentType(SQLModel, ActiveRecordMixin, table=True):
    __tablename__ = "document_type"

    code: str = Field(primary_key=True)
    name: str


class FiscalYear(SQLModel, ActiveRecordMixin, table=True):
    __tablename__ = "fiscal_year"

    #: For example, "2026-27".
    code: str = Field(primary_key=True)
    #: Whether new applications are assigned to this fiscal year. At most one fiscal year is current.
    is_current: bool = Field(default=False)

    @classmethod
    def current_code(cls, session: Session) -> str | None:
        obj = session.query(cls).filter(cls.is_current == True).first()  # noqa: E712
        if obj:
            return obj.code
        return None


class BudgetAllocation(SQLModel, ActiveRecordMixin, table=True):
    """The amount budgeted for a fiscal year, zone and application type, against which cost pressure is measured."""

    __tablename__ = "budget_allocation"

    id: int | None = Field(default=None, primary_key=True)
    fiscal_year_code: str = Field(foreign_key="fiscal_year.code", index=True)
    zone_code: str = Field(foreign_key="zone.code")
    application_type: ApplicationType
    allocated_amount: Decimal = Field(default=Decimal(0), max_digits=16, decimal_places=2)


class Faq(SQLModel, ActiveRecordMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    question: str
    answer: str
    category: str = Field(default="")
    sort_order: int = Field(default=0)
    is_active: bool = Field(default=True)


class ContactInquiry(SQLModel, ActiveRecordMixin, table=True):
    __tablename__ = "contact_inquiry"

    id: int | None = Field(default=None, primary_key=True)
    sender_name: str
    sender_email: str
    subject: str
    message: str
    ip_address: str | None = None

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


# Organizations


class OrganizationBase(SQLModel):
    #: The legal name of the organization.
    legal_name: str
    #: .. seealso:: :class:`app.models.OrganizationType`
    organization_type: OrganizationType
    society_registration_number: str | None = None
    registration_date: date | None = None

    service_address_street: str
    service_address_city: str
    service_address_province: str = Field(default="AB")
    service_address_postal_code: str

    mailing_address_street: str
    mailing_address_city: str
    mailing_address_province: str = Field(default="AB")
    mailing_address_postal_code: str

    primary_contact_name: str
    primary_contact_email: str
    primary_contact_phone: str

    #: The zone in which the organization provides services, for regional reporting.
    zone_code: str | None = Field(default=None, foreign_key="zone.code")


class Organization(OrganizationBase, ActiveRecordMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    #: The account identifier asserted by the identity provider.
    #:
    #: .. seealso:: :attr:`app.auth.Principal.external_account_id`
    external_account_id: str = Field(unique=True, index=True)

    # Relationships
    applications: list["Application"] = Relationship(back_populates="organization")

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, onupdate=func.now()),
    )


# Applications


class ApplicationBase(SQLModel):
    #: The human-readable identifier, like ``WSP-2026-0001``.
    #:
    #: .. seealso:: :meth:`app.models.Application.generate_reference_number`
    reference_number: str = Field(unique=True, index=True)
    application_type: ApplicationType | None = None
    fiscal_year_code: str | None = Field(default=None, foreign_key="fiscal_year.code")

    # Status

    #: The status of the application. Changed only by :mod:`app.workflow`.
    status: ApplicationStatus = Field(default=ApplicationStatus.DRAFT, index=True)

    # Shared draft fields

    program_name: ProgramType | None = None
    service_description: str | None = None
    proposed_unit_count: int | None = None
    partnership_details: str | None = None

    # Part A

    current_bed_count: int | None = None
    current_unit_count: int | None = None
    cost_pressures_description: str | None = None

    # Part B: community need justification

    proposed_location: str | None = None
    target_population: str | None = None
    community_need_justification: str | None = None
    existing_resources_description: str | None = None
    dv_data_reference: str | None = None

    # Part B: expansion details

    expansion_type: ExpansionType | None = None
    proposed_bed_count: int | None = None
    proposed_open_date: date | None = None

    # Part B: federal funding

    has_federal_funding: bool | None = None
    federal_agency_name: str | None = None
    federal_funding_amount: Decimal | None = Field(default=None, max_digits=16, decimal_places=2)
    federal_funding_expiry_date: date | None = None

    #: The sum of the budget lines' annual amounts.
    #:
    #: .. seealso:: :meth:`app.models.Application.replace_budget_lines`
    total_funding_requested: Decimal | None = Field(default=None, max_digits=16, decimal_places=2)

    # Timeline

    declaration_accepted: bool = Field(default=False)
    #: The time at which the applicant accepted the declaration.
    declaration_timestamp: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: The time at which the application transitioned to :attr:`~app.models.ApplicationStatus.SUBMITTED`.
    submitted_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    # Relationships
    organization_id: int = Field(foreign_key="organization.id", index=True)

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, onupdate=func.now()),
    )


class Application(ApplicationBase, ActiveRecordMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)

    # Relationships
    organization: Organization = Relationship(back_populates="applications")
    budget_lines: list["BudgetLineItem"] = Relationship(
        back_populates="application",
        sa_relationship_kwargs={"order_by": "BudgetLineItem.sort_order", "cascade": "all, delete-orphan"},
    )
    documents: list["Document"] = Relationship(back_populates="application")
    messages: list["Message"] = Relationship(back_populates="application")
    internal_notes: list["InternalNote"] = Relationship(back_populates="application")
    status_history: list["StatusHistory"] = Relationship(back_populates="application")

    @classmethod
    def generate_reference_number(cls, session: Session, now: datetime | None = None) -> str:
        """
        Return the next reference number for the calendar year, like ``WSP-2026-0042``.

        The sequence restarts at 1 each year. The unique constraint on ``reference_number`` rejects a number that is
        generated twice by concurrent requests.
        """
        year = (now or utcnow()).year
        prefix = f"{app_settings.reference_number_prefix}-{year}-"

        last = (
            session.query(cls.reference_number)
            .filter(col(cls.reference_number).startswith(prefix))
            .order_by(func.length(cls.reference_number).desc(), col(cls.reference_number).desc())
            .first()
        )

        sequence = 1
        if last:
            suffix = last[0].removeprefix(prefix)
            if suffix.isdigit():
                sequence = int(suffix) + 1

        return f"{prefix}{sequence:04d}"

    @classmethod
    def owned(cls, session: Session, organization_id: int) -> "Query[Self]":
        """Return a query for the organization's applications."""
        return session.query(cls).filter(cls.organization_id == organization_id)

    @classmethod
    def submitted(cls, session: Session) -> "Query[Self]":
        """Return a query for applications that have left DRAFT, which are the only ones reviewers and reports see."""
        return session.query(cls).filter(cls.status != ApplicationStatus.DRAFT)

    @classmethod
    def submitted_search(
        cls,
        session: Session,
        sort_field: str,
        sort_order: str,
        status: ApplicationStatus | None = None,
        search_value: str | None = None,
    ) -> "Query[Self]":
        query = (
            cls.submitted(session)
            .join(Organization, cls.organization_id == Organization.id)
            .options(joinedload(cls.organization))
            .order_by(get_order_by(sort_field, sort_order, model=cls), col(cls.created_at).desc())
        )

        if status:
            query = query.filter(cls.status == status)

        if search_value:
            like = f"%{search_value}%"
            query = query.filter(
                or_(
                    col(Organization.legal_name).ilike(like),
                    col(cls.reference_number).ilike(like),
                )
            )

        return query

    @property
    def is_draft(self) -> bool:
        return self.status == ApplicationStatus.DRAFT

    def replace_budget_lines(self, session: Session, lines: list[dict[str, Any]]) -> None:
        """
        Delete all budget lines, insert ``lines`` in order, and set :attr:`total_funding_requested` to their sum.

        Call within the transaction that updates the application, so that readers never observe a partial set.
        """
        session.query(BudgetLineItem).filter(BudgetLineItem.application_id == self.id).delete(
            synchronize_session=False
        )
        session.expire(self, ["budget_lines"])

        total = Decimal(0)
        for sort_order, line in enumerate(lines):
            BudgetLineItem.create(
                session,
                application_id=self.id,
                category=line["category"],
                description=line.get("description") or None,
                annual_amount=line["annual_amount"],
                sort_order=sort_order,
            )
            total += Decimal(str(line["annual_amount"]))

        self.total_funding_requested = total

    def to_read(self) -> "ApplicationWithOrganization":
        return ApplicationWithOrganization(
            **self.model_dump(),
            budget_lines=[BudgetLineItemRead(**line.model_dump()) for line in self.budget_lines],
            organization_name=self.organization.legal_name if self.organization else None,
        )

    def stage_as_submitted(self) -> None:
        """Assign fields related to marking the application as SUBMITTED."""
        now = utcnow()
        self.status = ApplicationStatus.SUBMITTED
        self.declaration_accepted = True
        self.declaration_timestamp = now
        self.submitted_at = now
        self.updated_at = now


class BudgetLineItemBase(SQLModel):
    category: BudgetCategory
    description: str | None = None
    annual_amount: Decimal = Field(max_digits=16, decimal_places=2)
    sort_order: int = Field(default=0)


class BudgetLineItem(BudgetLineItemBase, ActiveRecordMixin, table=True):
    __tablename__ = "budget_line_item"

    id: int | None = Field(default=None, primary_key=True)

    # Relationships
    application_id: int = Field(foreign_key="application.id", index=True)
    application: Application = Relationship(back_populates="budget_lines")

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


class StatusHistory(SQLModel, ActiveRecordMixin, table=True):
    """
    An append-only record of one accepted status transition.

    Rows are written by :mod:`app.workflow` only, and are never updated or deleted.
    """

    __tablename__ = "status_history"

    id: int | None = Field(default=None, primary_key=True)
    #: None only if the application was created in a status other than DRAFT (not currently possible).
    from_status: ApplicationStatus | None = None
    to_status: ApplicationStatus
    changed_by_user_id: str
    changed_by_role: ActorRole
    note: str | None = None

    # Relationships
    application_id: int = Field(foreign_key="application.id", index=True)
    application: Application = Relationship(back_populates="status_history")

    # Timestamps
    changed_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )

    @classmethod
    def for_application(cls, session: Session, application_id: int) -> list[Self]:
        """Return the application's history in chronological order."""
        return (
            cls.filter_by(session, "application_id", application_id)
            .order_by(col(cls.changed_at).asc(), col(cls.id).asc())
            .all()
        )


class DocumentBase(SQLModel):
    id: int | None = Field(default=None, primary_key=True)
    #: The filename, as uploaded.
    file_name: str
    file_type: FileType
    file_size_bytes: int
    document_type_code: str | None = Field(default=None, foreign_key="document_type.code")
    uploaded_by_user_id: str

    # Relationships
    application_id: int = Field(foreign_key="application.id", index=True)

    # Timestamps
    uploaded_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


class Document(DocumentBase, ActiveRecordMixin, table=True):
    #: The content of the document.
    file: bytes

    # Relationships
    application: Application = Relationship(back_populates="documents")

    @classmethod
    def total_size(cls, session: Session, application_id: int) -> int:
        """Return the total size in bytes of the application's documents."""
        return (
            session.query(func.coalesce(func.sum(cls.file_size_bytes), 0))
            .filter(cls.application_id == application_id)
            .scalar()
        )


class Message(SQLModel, ActiveRecordMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    sender_user_id: str
    sender_role: ActorRole
    subject: str | None = None
    body: str
    is_read: bool = Field(default=False)

    # Relationships
    application_id: int = Field(foreign_key="application.id", index=True)
    application: Application = Relationship(back_populates="messages")

    # Timestamps
    sent_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )

    @classmethod
    def thread(cls, session: Session, application_id: int) -> list[Self]:
        """Return the application's messages in chronological order."""
        return (
            cls.filter_by(session, "application_id", application_id)
            .order_by(col(cls.sent_at).asc(), col(cls.id).asc())
            .all()
        )


class InternalNote(SQLModel, ActiveRecordMixin, table=True):
    """A reviewer's note on an application, never shown to the applicant."""

    __tablename__ = "internal_note"

    id: int | None = Field(default=None, primary_key=True)
    author_user_id: str
    note_text: str

    # Relationships
    application_id: int = Field(foreign_key="application.id", index=True)
    application: Application = Relationship(back_populates="internal_notes")

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


class FundedShelterBase(SQLModel):
    shelter_name: str
    city: str
    zone_code: str = Field(foreign_key="zone.code")
    service_type_code: str = Field(foreign_key="service_type.code")
    bed_count: int | None = None
    unit_count: int | None = None
    is_active: bool = Field(default=True)


class FundedShelter(FundedShelterBase, ActiveRecordMixin, table=True):
    __tablename__ = "funded_shelter"

    id: int | None = Field(default=None, primary_key=True)
    #: Visible to reviewers only.
    funding_amount: Decimal | None = Field(default=None, max_digits=16, decimal_places=2)

    # Relationships
    zone: Zone = Relationship()
    service_type: ServiceType = Relationship()

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, onupdate=func.now()),
    )

    def to_public(self) -> "FundedShelterPublic":
        """Return the shelter without its funding amount."""
        return FundedShelterPublic(
            **self.model_dump(exclude={"funding_amount"}),
            zone_name=self.zone.name if self.zone else None,
            service_type_name=self.service_type.name if self.service_type else None,
        )

    def to_admin(self) -> "FundedShelterAdmin":
        return FundedShelterAdmin(
            **self.model_dump(),
            zone_name=self.zone.name if self.zone else None,
            service_type_name=self.service_type.name if self.service_type else None,
        )


# For ``sort_field`` values like "organization.legal_name".
MODEL_NAMES = {
    "application": "Application",
    "organization": "Organization",
}


# Classes that inherit from SQLModel but that are used as serializers only.


class OrganizationRead(OrganizationBase):
    id: int
    external_account_id: str
    created_at: datetime


class ApplicationRead(ApplicationBase):
    id: int


class BudgetLineItemRead(BudgetLineItemBase):
    id: int


class ApplicationWithBudget(ApplicationRead):
    budget_lines: list[BudgetLineItemRead] = Field(default_factory=list)


class ApplicationWithOrganization(ApplicationWithBudget):
    organization_name: str | None = None


class DocumentRead(DocumentBase):
    id: int


class FundedShelterPublic(FundedShelterBase):
    id: int
    zone_name: str | None = None
    service_type_name: str | None = None


class FundedShelterAdmin(FundedShelterPublic):
    funding_amount: Decimal | None = None
    created_at: datetime
    updated_at: datetime
