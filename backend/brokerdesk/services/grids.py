import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from brokerdesk.core.cache import get_cache
from brokerdesk.models.grid import ProductType, GRID_MODELS, GRID_DIMENSIONS, GridAuditLog

logger = logging.getLogger(__name__)

COMMON_FIELDS = (
    "provider", "product_sub_type", "plan_name", "commission_rate", "reward_rate",
    "valid_from", "valid_to", "is_active",
)


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class GridService:
    """Payout grid admin. Entries are deactivated, never deleted; every write is audited."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _model(grid_type):
        return GRID_MODELS[ProductType(grid_type)]

    @staticmethod
    def editable_fields(grid_type) -> tuple:
        return COMMON_FIELDS + GRID_DIMENSIONS[ProductType(grid_type)]

    def snapshot(self, grid_type, entry) -> Dict[str, Any]:
        return {f: _jsonable(getattr(entry, f)) for f in self.editable_fields(grid_type)}

    def list_entries(self, org_id: str, grid_type, provider: Optional[str] = None,
                     include_inactive: bool = False) -> List:
        model = self._model(grid_type)
        query = self.db.query(model).filter(model.org_id == org_id)
        if provider:
            query = query.filter(model.provider.ilike(provider))
        if not include_inactive:
            query = query.filter(model.is_active == True)
        return query.order_by(model.provider, model.valid_from.desc(), model.id).all()

    def get(self, org_id: str, grid_type, entry_id: int):
        model = self._model(grid_type)
        entry = self.db.query(model).filter(model.id == entry_id, model.org_id == org_id).first()
        if not entry:
            raise ValueError("Grid entry not found")
        return entry

    @staticmethod
    def _validate(values: Dict[str, Any]):
        if not (values.get("provider") or "").strip():
            raise ValueError("Provider is required")
        if values.get("commission_rate") is None:
            raise ValueError("Commission rate is required")
        if Decimal(str(values["commission_rate"])) < 0 or Decimal(str(values.get("reward_rate") or 0)) < 0:
            raise ValueError("Rates cannot be negative")
        if values.get("valid_from") is None:
            raise ValueError("valid_from is required")
        if values.get("valid_to") and values["valid_to"] < values["valid_from"]:
            raise ValueError("valid_to is before valid_from")

    def create(self, org_id: str, grid_type, data: Dict[str, Any], actor: str):
        model = self._model(grid_type)
        values = {k: v for k, v in data.items() if k in self.editable_fields(grid_type)}
        self._validate(values)
        values["provider"] = values["provider"].strip()
        entry = model(org_id=org_id, **values)
        self.db.add(entry)
        self.db.flush()
        self._audit(org_id, grid_type, entry.id, "CREATE", None, self.snapshot(grid_type, entry), actor)
        self.db.commit()
        self.db.refresh(entry)
        get_cache().invalidate_tenant(org_id)
        logger.info(f"{ProductType(grid_type).value} grid entry {entry.id} created for {entry.provider}")
        return entry

    def update(self, org_id: str, grid_type, entry_id: int, data: Dict[str, Any], actor: str):
        """Apply an edit. provider and commission_rate must be part of every update."""
        entry = self.get(org_id, grid_type, entry_id)
        if not (data.get("provider") or "").strip() or data.get("commission_rate") is None:
            raise ValueError("Provider and commission rate are required")

        old = self.snapshot(grid_type, entry)
        merged = dict(old)
        merged.update({k: v for k, v in data.items() if k in self.editable_fields(grid_type)})
        merged["valid_from"] = data.get("valid_from", entry.valid_from)
        merged["valid_to"] = data.get("valid_to", entry.valid_to)
        self._validate(merged)

        for key, value in data.items():
            if key in self.editable_fields(grid_type):
                setattr(entry, key, value.strip() if key == "provider" else value)
        entry.updated_at = datetime.now(timezone.utc)
        self._audit(org_id, grid_type, entry.id, "UPDATE", old, self.snapshot(grid_type, entry), actor)
        self.db.commit()
        self.db.refresh(entry)
        get_cache().invalidate_tenant(org_id)
        return entry

    def deactivate(self, org_id: str, grid_type, entry_id: int, actor: str):
        entry = self.get(org_id, grid_type, entry_id)
        if not entry.is_active:
            return entry
        old = self.snapshot(grid_type, entry)
        entry.is_active = False
        entry.updated_at = datetime.now(timezone.utc)
        self._audit(org_id, grid_type, entry.id, "DEACTIVATE", old, self.snapshot(grid_type, entry), actor)
        self.db.commit()
        self.db.refresh(entry)
        get_cache().invalidate_tenant(org_id)
        logger.info(f"{ProductType(grid_type).value} grid entry {entry_id} deactivated by {actor}")
        return entry

    def audit_log(self, org_id: str, grid_type=None, entry_id: Optional[int] = None, limit: int = 200) -> List[GridAuditLog]:
        query = self.db.query(GridAuditLog).filter(GridAuditLog.org_id == org_id)
        if grid_type:
            query = query.filter(GridAuditLog.grid_type == ProductType(grid_type).value)
        if entry_id is not None:
            query = query.filter(GridAuditLog.grid_id == entry_id)
        return query.order_by(GridAuditLog.id.desc()).limit(limit).all()

    def _audit(self, org_id, grid_type, grid_id, action, old_values, new_values, actor):
        self.db.add(GridAuditLog(
            org_id=org_id,
            grid_type=ProductType(grid_type).value,
            grid_id=grid_id,
            action=action,
            old_values=old_values,
            new_values=new_values,
            changed_by=actor,
        ))
