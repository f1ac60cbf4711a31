from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from brokerdesk.core.database import get_db
from brokerdesk.core.security import CurrentUser, get_current_user, require_roles, require_tenant, ADMIN_ROLES
from brokerdesk.schemas.campaign import CampaignCreate, CampaignUpdate, CampaignInDB
from brokerdesk.schemas.commission import CommissionActionRequest, CommissionCalculationRequest
from brokerdesk.schemas.compliance import ComplianceRuleCreate, ComplianceRuleInDB, ComplianceAlertInDB
from brokerdesk.schemas.volume_bonus import (
    BusinessBonusSlabCreate, BusinessBonusSlabInDB, VolumeTierCreate, VolumeTierInDB,
)
from brokerdesk.services.campaign_bonus import CampaignService
from brokerdesk.services.commission import CommissionCalculationService, build_context
from brokerdesk.services.commission_split import SplitParties
from brokerdesk.services.compliance import ComplianceGuard
from brokerdesk.services.dashboard import DashboardService
from brokerdesk.services.volume_bonus import VolumeBonusService

router = APIRouter(prefix="/api/commission", tags=["commission"])


def _preview(db: Session, org_id: str, req: CommissionCalculationRequest) -> dict:
    evaluation_date = req.evaluation_date or date.today()
    data = req.model_dump()
    context = build_context(req.product_type, evaluation_date, data)
    parties = SplitParties(
        agent_share_pct=req.agent_share_pct,
        misp_share_pct=req.misp_share_pct,
        employee_incentive_pct=req.employee_incentive_pct,
        reporting_override_pct=req.reporting_override_pct,
    )
    breakdown = CommissionCalculationService(db).calculate(
        org_id,
        req.product_type,
        req.provider,
        context,
        req.premium,
        source_type=req.source_type.value if req.source_type else None,
        parties=parties,
        gwp_to_date=req.gwp_to_date,
        business_volume=req.business_volume,
    )
    return breakdown.to_dict()


@router.post("")
def commission_action(
    body: CommissionActionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Action-style entry point used by the commission dashboard"""
    tenant_id = body.tenantId or current_user.org_id
    require_tenant(current_user, tenant_id)

    if body.action == "GET_DASHBOARD_DATA":
        return DashboardService(db).get_dashboard_data(tenant_id)
    if body.action == "GET_COMPLIANCE_ALERTS":
        return {"alerts": ComplianceGuard(db).rule_level_alerts(tenant_id)}

    if body.calculation is None:
        raise HTTPException(status_code=400, detail="calculation is required for CALCULATE_COMMISSION")
    return _preview(db, tenant_id, body.calculation)


@router.get("/dashboard")
def get_dashboard(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return DashboardService(db).get_dashboard_data(current_user.org_id)


@router.post("/calculate")
def calculate_commission(
    body: CommissionCalculationRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Preview base/reward/bonus, cap and split for a hypothetical policy"""
    return _preview(db, current_user.org_id, body)


# ── Compliance ──────────────────────────────────────────────────────

@router.get("/compliance/alerts")
def get_compliance_alerts(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Grid entries that already exceed their IRDAI cap"""
    return {"alerts": ComplianceGuard(db).rule_level_alerts(current_user.org_id)}


@router.get("/compliance/alerts/recorded", response_model=List[ComplianceAlertInDB])
def get_recorded_alerts(
    severity: Optional[str] = None,
    limit: int = 100,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cap breaches seen during commission syncs"""
    return ComplianceGuard(db).list_alerts(current_user.org_id, severity=severity, limit=limit)


@router.get("/irdai/caps")
def get_irdai_caps(
    lob: Optional[str] = None,
    channel: Optional[str] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    caps = ComplianceGuard(db).list_caps(current_user.org_id, product_category=lob, channel=channel)
    return [
        {
            "id": c.id,
            "lob": c.product_category,
            "channel": c.channel,
            "max_rate": float(c.max_allowed_rate),
            "product_category": c.product_category,
            "effective_from": c.effective_from,
            "effective_to": c.effective_to,
            "scope": "tenant" if c.org_id else "regulator",
        }
        for c in caps
    ]


@router.post("/irdai/caps", response_model=ComplianceRuleInDB, status_code=status.HTTP_201_CREATED)
def create_irdai_cap(
    body: ComplianceRuleCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    # Only system admins may publish a regulator-wide cap
    org_id = None if current_user.role == "system_admin" else current_user.org_id
    try:
        return ComplianceGuard(db).create_rule(org_id, body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/irdai/caps/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_irdai_cap(
    rule_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        ComplianceGuard(db).delete_rule(current_user.org_id, rule_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ── Campaigns ───────────────────────────────────────────────────────

@router.get("/campaigns", response_model=List[CampaignInDB])
def list_campaigns(
    include_inactive: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return CampaignService(db).list_campaigns(current_user.org_id, include_inactive=include_inactive)


@router.post("/campaigns", response_model=CampaignInDB, status_code=status.HTTP_201_CREATED)
def create_campaign(
    body: CampaignCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return CampaignService(db).create(current_user.org_id, body.model_dump(), created_by=current_user.display_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/campaigns/{campaign_id}", response_model=CampaignInDB)
def update_campaign(
    campaign_id: int,
    body: CampaignUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    service = CampaignService(db)
    try:
        service.get(current_user.org_id, campaign_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    try:
        return service.update(current_user.org_id, campaign_id, body.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/campaigns/{campaign_id}/deactivate", response_model=CampaignInDB)
def deactivate_campaign(
    campaign_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return CampaignService(db).deactivate(current_user.org_id, campaign_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ── Business bonus slabs and volume tiers ───────────────────────────

@router.get("/business-bonuses", response_model=List[BusinessBonusSlabInDB])
def list_business_bonuses(
    include_inactive: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return VolumeBonusService(db).list_slabs(current_user.org_id, include_inactive=include_inactive)


@router.post("/business-bonuses", response_model=BusinessBonusSlabInDB, status_code=status.HTTP_201_CREATED)
def create_business_bonus(
    body: BusinessBonusSlabCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return VolumeBonusService(db).create_slab(current_user.org_id, body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/business-bonuses/{slab_id}/deactivate", response_model=BusinessBonusSlabInDB)
def deactivate_business_bonus(
    slab_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return VolumeBonusService(db).deactivate_slab(current_user.org_id, slab_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/tiers", response_model=List[VolumeTierInDB])
def list_tiers(
    include_inactive: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return VolumeBonusService(db).list_tiers(current_user.org_id, include_inactive=include_inactive)


@router.post("/tiers", response_model=VolumeTierInDB, status_code=status.HTTP_201_CREATED)
def create_tier(
    body: VolumeTierCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return VolumeBonusService(db).create_tier(current_user.org_id, body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/tiers/{tier_id}/deactivate", response_model=VolumeTierInDB)
def deactivate_tier(
    tier_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_roles(current_user, *ADMIN_ROLES)
    try:
        return VolumeBonusService(db).deactivate_tier(current_user.org_id, tier_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
