from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, joinedload

from app import auth, models
from app.db import get_db
from app.exceptions import AuthenticationError
from app.i18n import _

bearer = HTTPBearer(auto_error=False)


def get_authenticator(request: Request) -> auth.BaseAuthenticator:
    """Return the identity driver built at startup."""
    return request.app.state.authenticator


async def get_optional_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    authenticator: auth.BaseAuthenticator = Depends(get_authenticator),
) -> auth.Principal | None:
    if credentials is None:
        return None
    try:
        return authenticator.get_user(credentials.credentials)
    except AuthenticationError:
        return None


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    authenticator: auth.BaseAuthenticator = Depends(get_authenticator),
) -> auth.Principal:
    """
    Return the principal of the Bearer session token.

    :raises HTTPException: 401 if the token is missing, malformed or expired.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_("Not authenticated"),
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return authenticator.get_user(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_(e.message),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_reviewer(principal: auth.Principal = Depends(get_principal)) -> auth.Principal:
    if not principal.is_reviewer:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_("Insufficient permissions"))
    return principal


async def get_applicant(principal: auth.Principal = Depends(get_principal)) -> auth.Principal:
    if not principal.is_applicant:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_("Only applicants can perform this action"))
    return principal


async def get_organization(
    principal: auth.Principal = Depends(get_applicant), session: Session = Depends(get_db)
) -> models.Organization:
    """
    Return the organization registered to the applicant's account.

    :raises HTTPException: 400 if the account has no identifier, or if no organization is registered to it.
    """
    if not principal.external_account_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_("Account ID not found"))

    organization = models.Organization.first_by(session, "external_account_id", principal.external_account_id)
    if not organization:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_("Organization not registered"))
    return organization


def get_owned_application(
    id: int,
    organization: models.Organization = Depends(get_organization),
    session: Session = Depends(get_db),
) -> models.Application:
    """
    Return the application if the applicant's organization owns it.

    :raises HTTPException: 404 if it doesn't exist or is owned by another organization. The two are indistinguishable.
    """
    application = (
        models.Application.owned(session, organization.id)
        .filter(models.Application.id == id)
        .options(joinedload(models.Application.budget_lines))
        .first()
    )
    if not application:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_("Application not found"))
    return application


def get_submitted_application(
    id: int,
    principal: auth.Principal = Depends(get_reviewer),
    session: Session = Depends(get_db),
) -> models.Application:
    """Return the application if it has left DRAFT. Reviewers never see drafts."""
    application = (
        models.Application.submitted(session)
        .filter(models.Application.id == id)
        .options(joinedload(models.Application.organization), joinedload(models.Application.budget_lines))
        .first()
    )
    if not application:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_("Application not found"))
    return application


def get_visible_application(
    id: int,
    principal: auth.Principal = Depends(get_principal),
    session: Session = Depends(get_db),
) -> models.Application:
    """
    Return the application if the principal is a reviewer, or an applicant of the owning organization.

    :raises HTTPException: 404 otherwise.
    """
    query = models.Application.filter_by(session, "id", id)
    if not principal.is_reviewer:
        organization = None
        if principal.external_account_id:
            organization = models.Organization.first_by(
                session, "external_account_id", principal.external_account_id
            )
        if organization is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_("Application not found"))
        query = query.filter(models.Application.organization_id == organization.id)

    application = query.first()
    if not application:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_("Application not found"))
    return application


def require_draft(message: str) -> Callable[[models.Application], models.Application]:
    """
    Return a dependency that requires the owned application to be DRAFT.

    :param message: The message of the 400 response otherwise.
    """

    def inner(application: models.Application = Depends(get_owned_application)) -> models.Application:
        if not application.is_draft:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "NOT_DRAFT", "message": _(message)},
            )
        return application

    return inner
