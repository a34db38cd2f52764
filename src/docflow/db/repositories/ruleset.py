"""
Tenant ruleset repository.
"""

from typing import Optional

from sqlalchemy.orm import Session

from docflow.db.repositories.base import BaseRepository
from docflow.models.db import TenantRuleset


class RulesetRepository(BaseRepository[TenantRuleset]):
    """Repository for tenant-authored rule documents."""

    def __init__(self, session: Session):
        super().__init__(TenantRuleset, session)

    def get_for_tenant(self, tenant_id: str) -> Optional[TenantRuleset]:
        return (
            self.session.query(TenantRuleset)
            .filter(TenantRuleset.tenant_id == tenant_id)
            .first()
        )

    def save(self, tenant_id: str, content: str) -> TenantRuleset:
        existing = self.get_for_tenant(tenant_id)
        if existing is None:
            return self.create(tenant_id=tenant_id, content=content)
        existing.content = content
        self.session.flush()
        return existing
