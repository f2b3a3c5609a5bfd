"""
PostgreSQL database module for the PipeTrak milestone engine.

Handles:
- Components and their milestone sets
- Milestone templates
- Field weld records
- Bulk operation transactions
- Audit logs
"""

from .connection import (
    get_database,
    Database,
    init_database,
    close_database,
    session_scope,
)
from .models import (
    Base,
    OrganizationMemberDB,
    ProjectDB,
    MilestoneTemplateDB,
    ComponentDB,
    ComponentMilestoneDB,
    FieldWeldDB,
    BulkOperationTransactionDB,
    AuditLogDB,
)

__all__ = [
    "get_database",
    "Database",
    "init_database",
    "close_database",
    "session_scope",
    "Base",
    "OrganizationMemberDB",
    "ProjectDB",
    "MilestoneTemplateDB",
    "ComponentDB",
    "ComponentMilestoneDB",
    "FieldWeldDB",
    "BulkOperationTransactionDB",
    "AuditLogDB",
]
