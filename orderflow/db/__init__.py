"""Database module for order service state and persistence."""

from orderflow.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from orderflow.db.models import (
    Base,
    CalendarEvent,
    Customer,
    Organization,
    OrganizationMember,
    OrgRole,
    OrgType,
    PackageAddOn,
    PaymentMode,
    PendingOrder,
    PendingOrderStatus,
    Project,
    ProjectStatus,
    ServicePackage,
    User,
)

__all__ = [
    # Models
    "Base",
    "Organization",
    "User",
    "OrganizationMember",
    "Customer",
    "ServicePackage",
    "PackageAddOn",
    "Project",
    "CalendarEvent",
    "PendingOrder",
    # Enums
    "OrgType",
    "OrgRole",
    "PaymentMode",
    "ProjectStatus",
    "PendingOrderStatus",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
