"""
Repository classes for database operations.

Each repository handles queries for its entity type. Every method takes an
optional session so engine code can run several writes in one transaction.
"""

from .components import ComponentRepository, get_component_repository
from .templates import TemplateRepository, get_template_repository
from .projects import ProjectRepository, get_project_repository
from .field_welds import FieldWeldRepository, get_field_weld_repository
from .audit import AuditRepository, get_audit_repository
from .transactions import TransactionRepository, get_transaction_repository

__all__ = [
    "ComponentRepository",
    "get_component_repository",
    "TemplateRepository",
    "get_template_repository",
    "ProjectRepository",
    "get_project_repository",
    "FieldWeldRepository",
    "get_field_weld_repository",
    "AuditRepository",
    "get_audit_repository",
    "TransactionRepository",
    "get_transaction_repository",
]
