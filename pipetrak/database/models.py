"""
SQLAlchemy models for PostgreSQL database.

Schema includes:
- Organization membership (consumed by access checks)
- Projects and their milestone templates
- Components with their instantiated milestone sets
- Field welds mirrored from the "Weld Made" milestone
- Audit log with field-level {old, new} change maps
- Bulk operation transactions (undo anchor for bulk updates)
"""

import enum
import uuid
from datetime import datetime, date
from typing import Optional, List, Dict

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    Date,
    Float,
    ForeignKey,
    JSON,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def generate_id() -> str:
    """Generate a string primary key."""
    return uuid.uuid4().hex


# ==================== ENUMS ====================

class WorkflowTypeEnum(str, enum.Enum):
    MILESTONE_DISCRETE = "MILESTONE_DISCRETE"
    MILESTONE_PERCENTAGE = "MILESTONE_PERCENTAGE"
    MILESTONE_QUANTITY = "MILESTONE_QUANTITY"


class ComponentStatusEnum(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class MemberRoleEnum(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class TransactionStatusEnum(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class AuditEntityEnum(str, enum.Enum):
    COMPONENT_MILESTONE = "component_milestone"
    FIELD_WELD = "field_weld"


# ==================== ORGANIZATIONS ====================

class OrganizationMemberDB(Base):
    """Membership of a user in an organization."""
    __tablename__ = "organization_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="member")  # owner, admin, member

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
        Index("idx_org_members_user", "user_id"),
    )


# ==================== PROJECTS ====================

class ProjectDB(Base):
    """Construction project owned by an organization."""
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    job_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    # Relationships
    components: Mapped[List["ComponentDB"]] = relationship("ComponentDB", back_populates="project")
    templates: Mapped[List["MilestoneTemplateDB"]] = relationship(
        "MilestoneTemplateDB", back_populates="project"
    )

    __table_args__ = (
        Index("idx_projects_org", "organization_id"),
    )


class MilestoneTemplateDB(Base):
    """
    Weighted milestone template.

    `milestones` is an ordered list of {"name", "weight", "order"} with
    1-based orders and weights summing to 100.
    """
    __tablename__ = "milestone_templates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    milestones: Mapped[List[Dict]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    project: Mapped["ProjectDB"] = relationship("ProjectDB", back_populates="templates")

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_template_project_name"),
    )


# ==================== COMPONENTS ====================

class ComponentDB(Base):
    """Trackable construction component (spool, valve, field weld...)."""
    __tablename__ = "components"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id", ondelete="CASCADE"))
    drawing_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    component_id: Mapped[str] = mapped_column(String(100), nullable=False)  # Display id, e.g. "VLV-101"
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # SPOOL, VALVE, FIELD_WELD...
    workflow_type: Mapped[str] = mapped_column(String(30), default=WorkflowTypeEnum.MILESTONE_DISCRETE.value)
    milestone_template_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("milestone_templates.id")
    )

    # Derived by recalculation only
    completion_percent: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(20), default=ComponentStatusEnum.NOT_STARTED.value)

    # Field weld pairing (matches FieldWeldDB.weld_id_number)
    weld_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    project: Mapped["ProjectDB"] = relationship("ProjectDB", back_populates="components")
    template: Mapped["MilestoneTemplateDB"] = relationship("MilestoneTemplateDB")
    milestones: Mapped[List["ComponentMilestoneDB"]] = relationship(
        "ComponentMilestoneDB",
        back_populates="component",
        cascade="all, delete-orphan",
        order_by="ComponentMilestoneDB.milestone_order",
    )

    __table_args__ = (
        Index("idx_components_project", "project_id"),
        Index("idx_components_project_status", "project_id", "status"),
        Index("idx_components_weld", "project_id", "weld_id"),
    )


class ComponentMilestoneDB(Base):
    """Progress record for one milestone of one component."""
    __tablename__ = "component_milestones"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)
    component_id: Mapped[str] = mapped_column(String(64), ForeignKey("components.id", ondelete="CASCADE"))
    milestone_name: Mapped[str] = mapped_column(String(100), nullable=False)
    milestone_order: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based, matches template order

    # Progress values (which one is meaningful depends on the workflow type)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    percentage_complete: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    quantity_complete: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    quantity_total: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Completion metadata, set and cleared together
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    component: Mapped["ComponentDB"] = relationship("ComponentDB", back_populates="milestones")

    __table_args__ = (
        UniqueConstraint("component_id", "milestone_name", name="uq_component_milestone_name"),
        Index("idx_component_milestones_component", "component_id"),
    )


# ==================== FIELD WELDS ====================

class FieldWeldDB(Base):
    """Weld log record, denormalized from the paired component's "Weld Made" milestone."""
    __tablename__ = "field_welds"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id", ondelete="CASCADE"))
    weld_id_number: Mapped[str] = mapped_column(String(100), nullable=False)
    welder_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    date_welded: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("project_id", "weld_id_number", name="uq_field_weld_number"),
    )


# ==================== BULK TRANSACTIONS ====================

class BulkOperationTransactionDB(Base):
    """
    One bulk milestone update.

    Audit entries written by the bulk reference this row through
    `transaction_id`, which is what undo replays.
    """
    __tablename__ = "bulk_operation_transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # bulk_<millis>_<8 hex>
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    operation_type: Mapped[str] = mapped_column(String(50), default="bulk_milestone_update")

    operation_count: Mapped[int] = mapped_column(Integer, default=0)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default=TransactionStatusEnum.IN_PROGRESS.value)

    # `metadata` is reserved by SQLAlchemy
    extra_metadata: Mapped[Optional[Dict]] = mapped_column("metadata", JSON, nullable=True)
    errors: Mapped[Optional[List]] = mapped_column(JSON, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rolled_back_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rolled_back_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_bulk_tx_user_started", "user_id", "started_at"),
        Index("idx_bulk_tx_project", "project_id"),
    )


# ==================== AUDIT ====================

class AuditLogDB(Base):
    """Immutable field-level change record."""
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)  # component_milestone, field_weld
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)  # UPDATE, CONFLICT_RESOLUTION, ROLLBACK

    changes: Mapped[Dict] = mapped_column(JSON, nullable=False)  # {field: {"old": ..., "new": ...}}
    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("bulk_operation_transactions.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_audit_transaction", "transaction_id"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_project_time", "project_id", "timestamp"),
    )
