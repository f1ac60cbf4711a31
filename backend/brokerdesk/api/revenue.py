from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session
from brokerdesk.core.database import get_db
from brokerdesk.core.security import CurrentUser, get_current_user, require_roles, ADMIN_ROLES
from brokerdesk.models.revenue import PolicyCommission
from brokerdesk.schemas.commission import PolicyCommissionInDB
from brokerdesk.schemas.revenue import (
    RevenueList, RevenueTotals, RevenueBreakdown, RevenueStatusUpdate, RevenueRecordInDB, BatchResultOut,
)
from brokerdesk.services.commission import CommissionCalculationService
from brokerdesk.services.revenue import RevenueService, RevenueFilters, AGGREGATE_DIMENSIONS

router = APIRouter(prefix="/api/revenue", tags=["revenue"])


def revenue_filters(
    product_type: Optional[str] = None,
    source_type: Optional[str] = None,
    provider: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> RevenueFilters:
    return RevenueFilters(
        product_type=product_type or None,
        source_type=source_type or None,
        provider=provider or None,
        search=(search or "").strip() or None,
        date_from=date_from,
        date_to=date_to,
    )


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("", response_model=RevenueList)
def list_revenue(
    filters: RevenueFilters = Depends(revenue_filters),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    view = RevenueService(db).get_revenue_rows(current_user.org_id, filters)
    return {"source": view.source, "count": len(view.rows), "rows": view.rows}


@router.get("/totals", response_model=RevenueTotals)
def get_totals(
    filters: RevenueFilters = Depends(revenue_filters),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return RevenueService(db).get_totals(current_user.org_id, filters).to_dict()


@router.get("/breakdown", response_model=RevenueBreakdown)
def get_breakdown(
    dimension: str = "product_type",
    filters: RevenueFilters = Depends(revenue_filters),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if dimension not in AGGREGATE_DIMENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"dimension must be one of: {', '.join(AGGREGATE_DIMENSIONS)}",
        )
    groups = RevenueService(db).get_breakdown(current_user.org_id, dimension, filters)
    return {"dimension": dimension, "groups": {k: v.to_dict() for k, v in groups.items()}}


@router.get("/export")
def export_revenue(
    filters: RevenueFilters = Depends(revenue_filters),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    content = RevenueService(db).export_csv(current_user.org_id, filters)
    return _csv_response(content, f"revenue_{date.today().isoformat()}.csv")


@router.get("/policy-commissions", response_model=List[PolicyCommissionInDB])
def list_policy_commissions(
    needs_manual_review: Optional[bool] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(PolicyCommission).filter(PolicyCommission.org_id == current_user.org_id)
    if needs_manual_review is not None:
        query = query.filter(PolicyCommission.needs_manual_review == needs_manual_review)
    return query.order_by(PolicyCommission.policy_id).all()


# ── Sync ────────────────────────────────────────────────────────────
# Run commissions first, then the revenue table. Both are safe to re-run.

@router.post("/sync/commissions", response_model=BatchResultOut)
def sync_commissions(
    errors_csv: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    result = CommissionCalculationService(db).sync_comprehensive_commissions(current_user.org_id)
    if errors_csv:
        return _csv_response(result.errors_csv(), "commission_sync_errors.csv")
    return result.to_dict()


@router.post("/sync/revenue-table", response_model=BatchResultOut)
def sync_revenue_table(
    errors_csv: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    result = RevenueService(db).sync_revenue_table(current_user.org_id)
    if errors_csv:
        return _csv_response(result.errors_csv(), "revenue_sync_errors.csv")
    return result.to_dict()


@router.patch("/{record_id}/status", response_model=RevenueRecordInDB)
def update_revenue_status(
    record_id: int,
    body: RevenueStatusUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Move a revenue record through its workflow. 409 if version_id is stale."""
    require_roles(current_user, *ADMIN_ROLES)
    service = RevenueService(db)
    try:
        service.get_record(current_user.org_id, record_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return service.update_status(
        current_user.org_id, record_id, body.commission_status.value, body.version_id, current_user.display_name
    )
