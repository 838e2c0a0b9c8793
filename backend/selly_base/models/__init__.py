from __future__ import annotations

from selly_base.models.company import Company, CompanyActivity, CompanyContact
from selly_base.models.import_job import EntityType, ImportJob, ImportStatus

__all__ = [
    "Company",
    "CompanyActivity",
    "CompanyContact",
    "EntityType",
    "ImportJob",
    "ImportStatus",
]
