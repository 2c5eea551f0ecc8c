"""
The application status lifecycle.

Only the functions in this module change :attr:`app.models.Application.status`, and each status change writes exactly
one :class:`app.models.StatusHistory` row in the same transaction.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from app import models
from app.auth import Principal
from app.exceptions import InvalidTransitionError, NotFoundError, SubmissionValidationError

logger = logging.getLogger(__name__)

ApplicationStatus = models.ApplicationStatus

#: The statuses to which a reviewer may move an application, by its current status.
#:
#: DRAFT → SUBMITTED is absent: only :func:`submit_application` performs it.
TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.SUBMITTED: frozenset({ApplicationStatus.UNDER_REVIEW}),
    ApplicationStatus.UNDER_REVIEW: frozenset(
        {
            ApplicationStatus.MORE_INFO_REQUIRED,
            ApplicationStatus.APPROVED,
            ApplicationStatus.DECLINED,
        }
    ),
    ApplicationStatus.MORE_INFO_REQUIRED: frozenset({ApplicationStatus.UNDER_REVIEW}),
}

#: Fields required for submission by all application types, with their labels.
SHARED_REQUIRED_FIELDS = {
    "program_name": "Program name",
    "service_description": "Service description",
}

#: Fields required for submission, by application type, with their labels.
TYPE_REQUIRED_FIELDS = {
    models.ApplicationType.PART_A_BASE_RENEWAL: {
        "current_bed_count": "Current bed count",
        "current_unit_count": "Current unit count",
    },
    models.ApplicationType.PART_B_NEW_OR_EXPANSION: {
        "proposed_location": "Proposed location",
        "target_population": "Target population",
        "community_need_justification": "Community need justification",
        "expansion_type": "Expansion type",
        "proposed_bed_count": "Proposed bed count",
    },
}

#: Labels of the fields that aren't draft fields, for messages.
OTHER_FIELD_LABELS = {
    "application_type": "Application type",
    "budget_lines": "At least one budget line item",
}

SUBMITTED_NOTE = "Application submitted by applicant"


def valid_transitions(current: ApplicationStatus) -> list[ApplicationStatus]:
    """Return the statuses reachable from ``current``, in declaration order. Empty for DRAFT and terminal statuses."""
    allowed = TRANSITIONS.get(current, frozenset())
    return [status for status in ApplicationStatus if status in allowed]


def is_terminal(status: ApplicationStatus) -> bool:
    return status in (ApplicationStatus.APPROVED, ApplicationStatus.DECLINED)


def validate_transition(current: ApplicationStatus, requested: ApplicationStatus) -> None:
    """
    Raise :exc:`~app.exceptions.InvalidTransitionError` if a reviewer may not move an application from ``current``
    to ``requested``.

    :param current: The application's current status.
    :param requested: The requested status.
    :raise InvalidTransitionError: With the list of valid next statuses.
    """
    if requested not in TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current, requested, [str(status) for status in valid_transitions(current)])


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def missing_submission_fields(application: models.Application, budget_line_count: int) -> list[str]:
    """
    Return the names of all fields that must be populated before the application can be submitted.

    An application without a type reports the type as missing, along with the shared fields.
    """
    missing = []

    if application.application_type is None:
        missing.append("application_type")

    required = dict(SHARED_REQUIRED_FIELDS)
    if application.application_type is not None:
        required.update(TYPE_REQUIRED_FIELDS[application.application_type])

    for field in required:
        if _is_blank(getattr(application, field)):
            missing.append(field)

    if budget_line_count < 1:
        missing.append("budget_lines")

    return missing


def field_label(field: str) -> str:
    """Return the readable label of a field that is required for submission."""
    if field in OTHER_FIELD_LABELS:
        return OTHER_FIELD_LABELS[field]
    for fields in (SHARED_REQUIRED_FIELDS, *TYPE_REQUIRED_FIELDS.values()):
        if field in fields:
            return fields[field]
    return field


def record_transition(
    session: Session,
    application: models.Application,
    from_status: ApplicationStatus | None,
    to_status: ApplicationStatus,
    principal: Principal,
    role: models.ActorRole,
    note: str | None = None,
) -> models.StatusHistory:
    """Append a history row. The caller commits."""
    return models.StatusHistory.create(
        session,
        application_id=application.id,
        from_status=from_status,
        to_status=to_status,
        changed_by_user_id=principal.id,
        changed_by_role=role,
        note=note,
    )


def lock_draft(session: Session, application_id: int, organization_id: int) -> models.Application:
    """
    Lock and return the application, if it is DRAFT and owned by the organization.

    Call within the transaction that writes to the application, so that no submission can commit in between.

    :raise NotFoundError: If the application doesn't exist, isn't owned by the organization, or isn't DRAFT.
    """
    application = (
        session.query(models.Application)
        .filter(
            models.Application.id == application_id,
            models.Application.organization_id == organization_id,
            models.Application.status == ApplicationStatus.DRAFT,
        )
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not application:
        raise NotFoundError("Application not found or is not in Draft status.")
    return application


def submit_application(
    session: Session, application_id: int, organization_id: int, principal: Principal
) -> models.Application:
    """
    Move an application from DRAFT to SUBMITTED.

    The row is locked, and is read only if it is still DRAFT and owned by the organization. A concurrent or repeated
    submission therefore finds no row.

    :raise NotFoundError: If the application doesn't exist, isn't owned by the organization, or isn't DRAFT.
    :raise SubmissionValidationError: With every missing field.
    """
    application = lock_draft(session, application_id, organization_id)

    budget_line_count = models.BudgetLineItem.filter_by(session, "application_id", application.id).count()
    if missing := missing_submission_fields(application, budget_line_count):
        raise SubmissionValidationError(missing, [field_label(field) for field in missing])

    application.stage_as_submitted()
    record_transition(
        session,
        application,
        ApplicationStatus.DRAFT,
        ApplicationStatus.SUBMITTED,
        principal,
        models.ActorRole.APPLICANT,
        SUBMITTED_NOTE,
    )

    session.commit()
    logger.info("Application %s submitted by %s", application.reference_number, principal.id)
    return application


def update_status(
    session: Session,
    application_id: int,
    requested: ApplicationStatus,
    principal: Principal,
    note: str | None = None,
) -> models.Application:
    """
    Move an application to the requested status, as a reviewer.

    The row is locked before the transition is validated, so that the check is made against the committed status.

    :raise NotFoundError: If the application doesn't exist.
    :raise InvalidTransitionError: If the transition table doesn't allow the transition.
    """
    application = (
        session.query(models.Application)
        .filter(models.Application.id == application_id)
        .with_for_update()
        .first()
    )
    if not application:
        raise NotFoundError()

    current = application.status
    validate_transition(current, requested)

    application.status = requested
    application.updated_at = models.utcnow()
    record_transition(session, application, current, requested, principal, models.ActorRole.REVIEWER, note)

    session.commit()
    logger.info(
        "Application %s moved from %s to %s by %s", application.reference_number, current, requested, principal.id
    )
    return application
