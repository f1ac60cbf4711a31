from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from brokerdesk.core.database import get_db
from brokerdesk.core.security import CurrentUser, get_current_user, require_roles, ADMIN_ROLES
from brokerdesk.models.grid import ProductType
from brokerdesk.schemas.grid import GridEntryCreate, GridEntryUpdate, GridEntryInDB, GridAuditLogInDB
from brokerdesk.services.grids import GridService

router = APIRouter(prefix="/api/grids", tags=["grids"])


# NOTE: /audit must be declared before /{grid_type} or it is parsed as a grid type
@router.get("/audit", response_model=List[GridAuditLogInDB])
def list_audit_log(
    grid_type: Optional[ProductType] = None,
    limit: int = 200,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return GridService(db).audit_log(current_user.org_id, grid_type=grid_type, limit=limit)


@router.get("/{grid_type}", response_model=List[GridEntryInDB])
def list_grid_entries(
    grid_type: ProductType,
    provider: Optional[str] = None,
    include_inactive: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return GridService(db).list_entries(
        current_user.org_id, grid_type, provider=provider, include_inactive=include_inactive
    )


@router.post("/{grid_type}", response_model=GridEntryInDB, status_code=status.HTTP_201_CREATED)
def create_grid_entry(
    grid_type: ProductType,
    body: GridEntryCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return GridService(db).create(current_user.org_id, grid_type, body.model_dump(), current_user.display_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{grid_type}/{entry_id}", response_model=GridEntryInDB)
def get_grid_entry(
    grid_type: ProductType,
    entry_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return GridService(db).get(current_user.org_id, grid_type, entry_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{grid_type}/{entry_id}", response_model=GridEntryInDB)
def update_grid_entry(
    grid_type: ProductType,
    entry_id: int,
    body: GridEntryUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    service = GridService(db)
    try:
        service.get(current_user.org_id, grid_type, entry_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    try:
        return service.update(
            current_user.org_id, grid_type, entry_id, body.model_dump(exclude_unset=True), current_user.display_name
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/{grid_type}/{entry_id}/deactivate", response_model=GridEntryInDB)
def deactivate_grid_entry(
    grid_type: ProductType,
    entry_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return GridService(db).deactivate(current_user.org_id, grid_type, entry_id, current_user.display_name)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{grid_type}/{entry_id}/audit", response_model=List[GridAuditLogInDB])
def get_entry_audit(
    grid_type: ProductType,
    entry_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return GridService(db).audit_log(current_user.org_id, grid_type=grid_type, entry_id=entry_id)
