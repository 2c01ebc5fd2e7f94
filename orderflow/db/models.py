"""SQLAlchemy ORM models for the order service state database.

This module defines the tenancy tables (organizations, users, memberships),
the customer relationships and priced packages orders are built from, the
production jobs ("projects") orders become, and the pending orders that
carry a paid order through checkout. Uses SQLAlchemy 2.0 style with Mapped
and mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, the form scheduling columns store."""
    return datetime.now(UTC).replace(tzinfo=None)


# Enums matching the database schema constraints


class OrgType(str, Enum):
    """Organization kinds. Only COMPANY orgs accept orders from agents."""

    personal = "PERSONAL"
    team = "TEAM"
    company = "COMPANY"


class PaymentMode(str, Enum):
    """How a provider organization collects payment for agent orders."""

    no_payment = "NO_PAYMENT"
    upfront_payment = "UPFRONT_PAYMENT"
    invoice_after_delivery = "INVOICE_AFTER_DELIVERY"


class OrgRole(str, Enum):
    """Membership roles within an organization."""

    owner = "OWNER"
    admin = "ADMIN"
    project_manager = "PROJECT_MANAGER"
    technician = "TECHNICIAN"
    editor = "EDITOR"
    personal_owner = "PERSONAL_OWNER"


class ProjectStatus(str, Enum):
    """Status values for production jobs.

    Lifecycle: PENDING -> BOOKED -> SHOOTING -> EDITING -> DELIVERED
               any -> CANCELLED
    """

    pending = "PENDING"
    booked = "BOOKED"
    shooting = "SHOOTING"
    editing = "EDITING"
    delivered = "DELIVERED"
    cancelled = "CANCELLED"


class PendingOrderStatus(str, Enum):
    """Status values for pending orders.

    Lifecycle: PENDING_PAYMENT -> FULFILLED | EXPIRED (both terminal)
    """

    pending_payment = "PENDING_PAYMENT"
    fulfilled = "FULFILLED"
    expired = "EXPIRED"


class SchedulingMode(str, Enum):
    """Whether the customer booked a fixed slot or requested one."""

    scheduled = "scheduled"
    requested = "requested"


class Priority(str, Enum):
    """Order urgency."""

    standard = "standard"
    rush = "rush"
    urgent = "urgent"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class Organization(Base):
    """Tenant organization.

    Attributes:
        id: UUID primary key
        name: Display name
        type: PERSONAL, TEAM or COMPANY
        payment_mode: How agent orders are paid for (provider orgs only)
        created_at: ISO8601 timestamp of creation
    """

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrgType.company.value
    )
    payment_mode: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PaymentMode.no_payment.value
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    members: Mapped[list["OrganizationMember"]] = relationship(
        "OrganizationMember", back_populates="organization",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id!r}, name={self.name!r}, type={self.type!r})>"


class User(Base):
    """Platform user. ``calendar_id`` links the external calendar account."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id!r})>"


class OrganizationMember(Base):
    """Membership of a user in an organization with a single role."""

    __tablename__ = "organization_members"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="members"
    )

    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_org_member"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrganizationMember(org_id={self.org_id!r}, "
            f"user_id={self.user_id!r}, role={self.role!r})>"
        )


class Customer(Base):
    """Customer relationship held by an organization.

    Email is stored normalized (stripped, lower-cased) so the unique
    (org_id, email) constraint catches case variants. ``user_id`` is set
    when the customer is itself a platform user, as agents ordering from
    a provider are.

    Attributes:
        id: UUID primary key
        org_id: Owning organization
        user_id: Linked platform user, if any
        name: Display name
        email: Normalized email, unique per org when present
        phone: Optional phone number
        notes: Free-text notes
        created_at: ISO8601 timestamp of creation
        updated_at: ISO8601 timestamp of last update
    """

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_customer_org_email"),
        Index("idx_customers_org_user", "org_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id!r}, org_id={self.org_id!r})>"


class ServicePackage(Base):
    """Priced service offering of an organization. Price in minor units."""

    __tablename__ = "service_packages"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<ServicePackage(id={self.id!r}, name={self.name!r})>"


class PackageAddOn(Base):
    """Optional add-on that can be ordered alongside any package of the org."""

    __tablename__ = "package_add_ons"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<PackageAddOn(id={self.id!r}, name={self.name!r})>"


class Project(Base):
    """Production job created from an order.

    Scheduling instants are naive UTC datetimes so technician windows
    compare in SQL. ``pending_order_id`` is unique: a pending order can
    produce at most one project.

    Attributes:
        id: UUID primary key
        org_id: Organization doing the work
        customer_id: Paying customer relationship
        address_*: Resolved (or raw) service address
        scheduled_time: Start of the booked window
        scheduled_end: End of the booked window (exclusive)
        duration_minutes: Length of the booked window
        status: ProjectStatus value
        technician_id / editor_id / project_manager_id: Assignees
        payment_*: Captured payment details for paid orders
        pending_order_id: Originating pending order, if paid through checkout
    """

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    customer_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )

    # Address
    address_line1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Schedule
    scheduled_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    scheduled_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProjectStatus.booked.value
    )

    # Assignees
    technician_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    editor_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    project_manager_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Payment (in cents to avoid float issues)
    payment_amount_cents: Mapped[int | None] = mapped_column(nullable=True)
    payment_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    pending_order_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, unique=True
    )

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    calendar_event: Mapped["CalendarEvent | None"] = relationship(
        "CalendarEvent", back_populates="project", uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_projects_technician_window", "technician_id", "scheduled_time"),
        Index("idx_projects_org_status", "org_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id!r}, org_id={self.org_id!r}, status={self.status!r})>"


class CalendarEvent(Base):
    """Local record of an event pushed to the technician's external calendar."""

    __tablename__ = "calendar_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    technician_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(255), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    project: Mapped["Project"] = relationship(
        "Project", back_populates="calendar_event"
    )

    def __repr__(self) -> str:
        return (
            f"<CalendarEvent(id={self.id!r}, project_id={self.project_id!r}, "
            f"external_event_id={self.external_event_id!r})>"
        )


class PendingOrder(Base):
    """Billing intent awaiting payment through hosted checkout.

    Only the fulfillment service transitions ``status``. Once FULFILLED or
    EXPIRED no further mutation is permitted.

    Attributes:
        id: UUID primary key (carried in checkout metadata as pendingOrderId)
        provider_org_id: Organization that will do the work
        agent_user_id: User who placed the order
        agent_customer_id: The agent's customer relationship with the provider
        package_id: Ordered service package
        order_payload: Versioned JSON order intent (see services.order_payload)
        stripe_session_id: Checkout session id, unique once assigned
        status: PendingOrderStatus value
        total_amount_cents: Quoted total in minor units
        currency: ISO currency code
        project_id: Resulting project once fulfilled
        payment_intent_id: Gateway payment intent once paid
        completed_at: ISO8601 timestamp of fulfillment
        expires_at: When an unpaid order may be expired
    """

    __tablename__ = "pending_orders"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    provider_org_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    agent_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    agent_customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False
    )
    package_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("service_packages.id", ondelete="SET NULL"),
        nullable=True,
    )
    order_payload: Mapped[str] = mapped_column(Text, nullable=False)
    stripe_session_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PendingOrderStatus.pending_payment.value
    )
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    project_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (
        Index("idx_pending_orders_status_expires", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<PendingOrder(id={self.id!r}, status={self.status!r})>"
