from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form, status
from sqlalchemy.orm import Session
from brokerdesk.core.config import settings
from brokerdesk.core.database import get_db
from brokerdesk.core.security import CurrentUser, get_current_user, require_roles, ADMIN_ROLES
from brokerdesk.schemas.settlement import (
    SettlementCreate, SettlementTransition, SettlementResubmit, SettlementInDB,
    SettlementEventInDB, ReconcileOut, StatementUploadOut,
)
from brokerdesk.services.reconciliation import SettlementService

router = APIRouter(prefix="/api/settlements", tags=["settlements"])


def _get_or_404(service: SettlementService, org_id: str, settlement_id: int):
    try:
        return service.get(org_id, settlement_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/upload", response_model=StatementUploadOut, status_code=status.HTTP_201_CREATED)
async def upload_statement(
    file: UploadFile = File(...),
    insurer: str = Form(...),
    period: str = Form(...),  # YYYY-MM
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Upload an insurer statement (CSV/XLSX) and open or refresh the period's settlement"""
    require_roles(current_user, *ADMIN_ROLES)
    file_bytes = await file.read()
    if len(file_bytes) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=413, detail="Statement file too large")

    try:
        settlement, parsed = SettlementService(db).create_from_statement(
            current_user.org_id, insurer.strip(), period, file_bytes, file.filename, current_user.display_name
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"settlement": settlement, "rows_parsed": len(parsed.rows), "errors": parsed.errors}


@router.post("", response_model=SettlementInDB, status_code=status.HTTP_201_CREATED)
def create_settlement(
    body: SettlementCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return SettlementService(db).create(
            current_user.org_id,
            body.insurer.strip(),
            body.period,
            body.received,
            current_user.display_name,
            expected=body.expected,
            notes=body.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=List[SettlementInDB])
def list_settlements(
    status: Optional[str] = None,
    insurer: Optional[str] = None,
    period: Optional[str] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return SettlementService(db).list_settlements(current_user.org_id, status=status, insurer=insurer, period=period)


@router.get("/{settlement_id}", response_model=SettlementInDB)
def get_settlement(
    settlement_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _get_or_404(SettlementService(db), current_user.org_id, settlement_id)


@router.get("/{settlement_id}/reconcile", response_model=ReconcileOut)
def reconcile_settlement(
    settlement_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Variance and suggested status. Does not change anything."""
    service = SettlementService(db)
    _get_or_404(service, current_user.org_id, settlement_id)
    result = service.reconcile(current_user.org_id, settlement_id)
    return {
        "variance": result.variance,
        "suggested_status": result.suggested_status.value,
        "within_tolerance": result.within_tolerance,
    }


@router.post("/{settlement_id}/approve", response_model=SettlementInDB)
def approve_settlement(
    settlement_id: int,
    body: Optional[SettlementTransition] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    body = body or SettlementTransition()
    service = SettlementService(db)
    _get_or_404(service, current_user.org_id, settlement_id)
    return service.approve(
        current_user.org_id, settlement_id, current_user.display_name, version_id=body.version_id, note=body.note
    )


@router.post("/{settlement_id}/dispute", response_model=SettlementInDB)
def dispute_settlement(
    settlement_id: int,
    body: Optional[SettlementTransition] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    body = body or SettlementTransition()
    service = SettlementService(db)
    _get_or_404(service, current_user.org_id, settlement_id)
    return service.dispute(
        current_user.org_id, settlement_id, current_user.display_name, version_id=body.version_id, note=body.note
    )


@router.post("/{settlement_id}/resubmit", response_model=SettlementInDB)
def resubmit_settlement(
    settlement_id: int,
    body: SettlementResubmit,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    service = SettlementService(db)
    _get_or_404(service, current_user.org_id, settlement_id)
    return service.resubmit(
        current_user.org_id,
        settlement_id,
        body.received,
        current_user.display_name,
        expected=body.expected,
        version_id=body.version_id,
        note=body.note,
    )


@router.get("/{settlement_id}/events", response_model=List[SettlementEventInDB])
def get_settlement_events(
    settlement_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = SettlementService(db)
    _get_or_404(service, current_user.org_id, settlement_id)
    return service.events(current_user.org_id, settlement_id)
