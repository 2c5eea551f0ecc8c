import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app import auth, dependencies, models, parsers, serializers, util
from app.db import get_db, rollback_on_error
from app.i18n import _

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/organizations",
    tags=[util.Tags.organizations],
    status_code=status.HTTP_201_CREATED,
)
async def register_organization(
    payload: parsers.OrganizationCreate,
    session: Session = Depends(get_db),
    principal: auth.Principal = Depends(dependencies.get_applicant),
) -> serializers.OrganizationResponse:
    """
    Register the applicant's organization. An account can register one organization.

    :return: The registered organization.
    """
    if not principal.external_account_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_("Account ID not found"))

    with rollback_on_error(session):
        if models.Organization.first_by(session, "external_account_id", principal.external_account_id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=_("An organization is already registered to this account"),
            )
        if payload.zone_code:
            util.get_object_or_404(session, models.Zone, "code", payload.zone_code)

        organization = models.Organization.create(
            session,
            external_account_id=principal.external_account_id,
            **payload.model_dump(),
        )

        session.commit()
        logger.info("Organization %s registered by %s", organization.id, principal.id)
        return serializers.OrganizationResponse(
            organization=models.OrganizationRead.model_validate(organization, from_attributes=True),
            detail=_("Organization registered successfully."),
        )


@router.get(
    "/organizations/me",
    tags=[util.Tags.organizations],
)
async def get_my_organization(
    organization: models.Organization = Depends(dependencies.get_organization),
) -> models.OrganizationRead:
    return organization
