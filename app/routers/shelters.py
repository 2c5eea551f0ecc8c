from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Query, Session, joinedload
from sqlmodel import col

from app import auth, dependencies, models, parsers, util
from app.db import get_db, rollback_on_error
from app.i18n import _

router = APIRouter()


def _validate_references(session: Session, zone_code: str | None, service_type_code: str | None) -> None:
    if zone_code and not models.Zone.first_by(session, "code", zone_code):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=_("Invalid zone: %(code)s", code=zone_code),
        )
    if service_type_code and not models.ServiceType.first_by(session, "code", service_type_code):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=_("Invalid service type: %(code)s", code=service_type_code),
        )


def _shelters(session: Session) -> "Query[models.FundedShelter]":
    return (
        session.query(models.FundedShelter)
        .options(joinedload(models.FundedShelter.zone), joinedload(models.FundedShelter.service_type))
        .order_by(col(models.FundedShelter.shelter_name).asc())
    )


@router.get(
    "/funded-shelters",
    tags=[util.Tags.shelters],
)
async def list_funded_shelters(
    search: str | None = None,
    zone: str | None = None,
    session: Session = Depends(get_db),
) -> list[models.FundedShelterPublic]:
    """
    List active funded shelters, without their funding amounts.

    :param search: Filter by shelter name (case-insensitive substring).
    :param zone: Filter by zone code.
    """
    query = _shelters(session).filter(models.FundedShelter.is_active == True)  # noqa: E712
    if search:
        query = query.filter(col(models.FundedShelter.shelter_name).ilike(f"%{search}%"))
    if zone:
        query = query.filter(models.FundedShelter.zone_code == zone)

    return [shelter.to_public() for shelter in query]


@router.get(
    "/admin/funded-shelters",
    tags=[util.Tags.admin],
)
async def list_funded_shelters_admin(
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> list[models.FundedShelterAdmin]:
    """List all funded shelters, including inactive shelters and funding amounts."""
    return [shelter.to_admin() for shelter in _shelters(session)]


@router.post(
    "/admin/funded-shelters",
    tags=[util.Tags.admin],
    status_code=status.HTTP_201_CREATED,
)
async def create_funded_shelter(
    payload: parsers.FundedShelterCreate,
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> models.FundedShelterAdmin:
    with rollback_on_error(session):
        _validate_references(session, payload.zone_code, payload.service_type_code)

        shelter = models.FundedShelter.create(session, **payload.model_dump())

        session.commit()
        session.refresh(shelter)
        return shelter.to_admin()


@router.get(
    "/admin/funded-shelters/{id}",
    tags=[util.Tags.admin],
)
async def get_funded_shelter(
    id: int,
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> models.FundedShelterAdmin:
    return util.get_object_or_404(session, models.FundedShelter, "id", id).to_admin()


@router.patch(
    "/admin/funded-shelters/{id}",
    tags=[util.Tags.admin],
)
async def update_funded_shelter(
    id: int,
    payload: parsers.FundedShelterUpdate,
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> models.FundedShelterAdmin:
    """
    Update the fields that are set and not null in the request.

    Set ``is_active`` to false to hide a shelter from the public list.
    """
    with rollback_on_error(session):
        shelter = util.get_object_or_404(session, models.FundedShelter, "id", id)
        data = payload.model_dump(exclude_unset=True, exclude_none=True)
        _validate_references(session, data.get("zone_code"), data.get("service_type_code"))

        shelter.update(session, **data, updated_at=models.utcnow())

        session.commit()
        session.refresh(shelter)
        return shelter.to_admin()
