"""Order intake: turns an order intent into a project or a checkout.

Two flows:

1. Agent flow (``provider_org_id`` set): a user orders work from a
   provider company they already hold a customer relationship with. If
   the provider takes payment upfront and a package is selected, the
   order is parked as a pending order and the caller is sent to hosted
   checkout; the project is created later by the fulfillment service.
2. Company flow (no provider): the caller's own organization books the
   job directly, optionally for a new customer, and optionally assigns a
   technician whose calendar is checked for overlaps.

Example:
    svc = OrdersService(db, config, resolver, calendar, gateway=gateway)
    result = svc.create_order(ctx, user, intent)
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from orderflow.config import AppConfig
from orderflow.db.models import (
    CalendarEvent,
    Customer,
    Organization,
    OrgType,
    PaymentMode,
    PendingOrder,
    PendingOrderStatus,
    Priority,
    Project,
    ProjectStatus,
    SchedulingMode,
    User,
    utc_now,
)
from orderflow.errors import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from orderflow.services.address_resolver import AddressResolver, ResolvedAddress
from orderflow.services.authorization import (
    AuthenticatedUser,
    OrgContext,
    PermissionChecker,
    RolePermissionChecker,
)
from orderflow.services.calendar_sync import CalendarSyncService
from orderflow.services.customer_service import CustomerService
from orderflow.services.order_payload import OrderIntent, encode_order_payload
from orderflow.services.payment_gateway import PaymentGateway
from orderflow.services.pricing import calculate_total
from orderflow.services.scheduling import (
    SchedulingConflictChecker,
    conflicts_to_dicts,
    window_end,
)
from orderflow.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    """A project created directly by order intake."""

    project: Project
    customer: Customer | None
    calendar_event: CalendarEvent | None
    is_new_customer: bool


@dataclass
class CheckoutResult:
    """Redirect-to-payment result for orders that must be paid upfront."""

    checkout_url: str
    session_id: str
    pending_order_id: str


def build_notes(intent: OrderIntent) -> str:
    """Build project notes from the intent, one entry per line."""
    parts: list[str] = []
    if intent.priority != Priority.standard:
        parts.append(f"Priority: {intent.priority.value.upper()}")
    if intent.media_types:
        parts.append(f"Media: {', '.join(intent.media_types)}")
    if intent.estimated_duration:
        parts.append(f"Duration: {intent.estimated_duration} min")
    if intent.notes:
        parts.append(intent.notes)
    return "\n".join(parts)


def initial_project_status(intent: OrderIntent) -> str:
    """Requested slots await confirmation; scheduled ones are booked."""
    if intent.scheduling_mode == SchedulingMode.requested:
        return ProjectStatus.pending.value
    return ProjectStatus.booked.value


def build_project(
    org_id: str,
    customer_id: str | None,
    intent: OrderIntent,
    address: ResolvedAddress,
    status: str,
    technician_id: str | None = None,
    editor_id: str | None = None,
    project_manager_id: str | None = None,
) -> Project:
    """Construct (but do not add) a project from an order intent."""
    return Project(
        org_id=org_id,
        customer_id=customer_id,
        status=status,
        address_line1=address.address_line1,
        address_line2=address.address_line2,
        city=address.city,
        region=address.region,
        postal_code=address.postal_code,
        country_code=address.country_code,
        lat=address.lat,
        lng=address.lng,
        notes=build_notes(intent),
        scheduled_time=intent.scheduled_time,
        scheduled_end=window_end(intent.scheduled_time, intent.estimated_duration),
        duration_minutes=intent.estimated_duration,
        technician_id=technician_id,
        editor_id=editor_id,
        project_manager_id=project_manager_id,
    )


def _require_media_types(intent: OrderIntent) -> None:
    if not intent.media_types:
        raise ValidationError("At least one media type must be selected")


class OrdersService:
    """Order intake for both the agent and the company flow.

    Each public method runs in its own transaction on ``db`` and commits
    before returning; on failure everything it wrote is rolled back.
    """

    def __init__(
        self,
        db: Session,
        config: AppConfig,
        address_resolver: AddressResolver,
        calendar_sync: CalendarSyncService,
        gateway: PaymentGateway | None = None,
        permissions: PermissionChecker | None = None,
    ) -> None:
        self.db = db
        self.config = config
        self.address_resolver = address_resolver
        self.calendar_sync = calendar_sync
        self.gateway = gateway
        self.permissions = permissions or RolePermissionChecker()
        self.customers = CustomerService(db)
        self.scheduling = SchedulingConflictChecker(db)

    def create_order(
        self,
        ctx: OrgContext,
        user: AuthenticatedUser,
        intent: OrderIntent,
    ) -> OrderResult | CheckoutResult:
        """Create an order, dispatching on the flow the intent selects.

        Returns:
            CheckoutResult when the provider requires upfront payment for
            the selected package, otherwise the created OrderResult.
        """
        if intent.provider_org_id:
            provider = self.db.get(Organization, intent.provider_org_id)
            if provider is None:
                raise ForbiddenError("Provider organization not found")
            if (
                provider.payment_mode == PaymentMode.upfront_payment.value
                and intent.package_id
            ):
                return self.create_checkout_session(ctx, user, intent)
            return self.create_agent_order(user, intent)

        return self.create_company_order(ctx, user, intent)

    def get_provider_payment_mode(self, org_id: str) -> str:
        """Payment mode of a provider organization.

        Raises:
            ForbiddenError: If the organization does not exist.
        """
        org = self.db.get(Organization, org_id)
        if org is None:
            raise ForbiddenError("Organization not found")
        return org.payment_mode

    def _require_provider_relationship(
        self, provider_org_id: str | None, user: AuthenticatedUser
    ) -> tuple[Organization, Customer]:
        """Check the agent-flow prerequisites.

        Raises:
            ValidationError: If no provider org is given.
            ForbiddenError: If the provider is missing, not a company, or
                the user is not its customer.
        """
        if not provider_org_id:
            raise ValidationError("providerOrgId is required for agent orders")
        provider = self.db.get(Organization, provider_org_id)
        if provider is None:
            raise ForbiddenError("Provider organization not found")
        if provider.type != OrgType.company.value:
            raise ForbiddenError("Provider organization must be a COMPANY")
        relationship = self.customers.find_relationship(provider.id, user.id)
        if relationship is None:
            raise ForbiddenError(
                "You are not registered as a customer of this organization"
            )
        return provider, relationship

    def create_agent_order(
        self, user: AuthenticatedUser, intent: OrderIntent
    ) -> OrderResult:
        """Create an unassigned project under the provider organization.

        The agent's existing customer relationship is the project's
        customer. Assignment is left to the provider.
        """
        provider, relationship = self._require_provider_relationship(
            intent.provider_org_id, user
        )
        _require_media_types(intent)
        provider_id, relationship_id = provider.id, relationship.id

        # No transaction stays open across the geocoding round trip
        self.db.rollback()
        address = self.address_resolver.resolve(intent)

        relationship = self.db.get(Customer, relationship_id)
        project = build_project(
            org_id=provider_id,
            customer_id=relationship_id,
            intent=intent,
            address=address,
            status=initial_project_status(intent),
        )
        try:
            self.db.add(project)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Agent %s created project %s with provider %s",
            user.id, project.id, provider_id,
        )
        return OrderResult(
            project=project,
            customer=relationship,
            calendar_event=None,
            is_new_customer=False,
        )

    def _resolve_technician(
        self, ctx: OrgContext, user: AuthenticatedUser, intent: OrderIntent
    ) -> str | None:
        """Personal orgs book their owner; other orgs book the requested technician."""
        if ctx.is_personal:
            return user.id
        return intent.technician_id

    def create_company_order(
        self,
        ctx: OrgContext,
        user: AuthenticatedUser,
        intent: OrderIntent,
    ) -> OrderResult:
        """Book a project in the caller's own organization.

        Customer resolution, project creation and the calendar event run in
        one transaction. The calendar step is best-effort.

        Raises:
            ForbiddenError: If the caller may not create orders here, or
                the referenced customer belongs to another org.
            ValidationError: On missing customer input or media types.
            ConflictError: If the technician is already booked in the window,
                here or on their linked external calendar.
        """
        if not self.permissions.can_create_order(ctx, user):
            raise ForbiddenError(
                "You are not allowed to create orders in this organization"
            )
        if not intent.customer_id and intent.new_customer is None:
            raise ValidationError("Either customerId or newCustomer must be provided")
        _require_media_types(intent)

        technician_id = self._resolve_technician(ctx, user, intent)
        calendar_id = self._technician_calendar_id(technician_id)
        self.db.rollback()
        address = self.address_resolver.resolve(intent)
        if calendar_id:
            self._raise_on_calendar_busy(technician_id, calendar_id, intent)

        try:
            if technician_id:
                if self.db.get(User, technician_id) is None:
                    raise NotFoundError("User", technician_id)
                self.scheduling.lock_technician(technician_id)
                self._raise_on_conflicts(ctx.org_id, technician_id, intent)

            resolution = self.customers.resolve_customer(
                ctx.org_id,
                customer_id=intent.customer_id,
                new_customer=intent.new_customer,
            )
            project = build_project(
                org_id=ctx.org_id,
                customer_id=resolution.customer.id,
                intent=intent,
                address=address,
                status=initial_project_status(intent),
                technician_id=technician_id,
                editor_id=intent.editor_id,
                project_manager_id=intent.project_manager_id or user.id,
            )
            self.db.add(project)
            self.db.flush()

            if technician_id:
                self._raise_on_conflicts(
                    ctx.org_id, technician_id, intent, exclude_project_id=project.id
                )

            calendar_event = None
            if technician_id:
                calendar_event = self.calendar_sync.create_event(self.db, project)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Created project %s in org %s (technician=%s, new_customer=%s)",
            project.id, ctx.org_id, technician_id, resolution.is_new,
        )
        return OrderResult(
            project=project,
            customer=resolution.customer,
            calendar_event=calendar_event,
            is_new_customer=resolution.is_new,
        )

    def _raise_on_conflicts(
        self,
        org_id: str,
        technician_id: str,
        intent: OrderIntent,
        exclude_project_id: str | None = None,
    ) -> None:
        conflicts = self.scheduling.find_conflicts(
            org_id,
            technician_id,
            intent.scheduled_time,
            intent.estimated_duration,
            exclude_project_id=exclude_project_id,
        )
        if conflicts:
            raise ConflictError(
                "Time slot conflict detected", conflicts=conflicts_to_dicts(conflicts)
            )

    def _technician_calendar_id(self, technician_id: str | None) -> str | None:
        if not technician_id or not self.calendar_sync.enabled:
            return None
        technician = self.db.get(User, technician_id)
        return technician.calendar_id if technician is not None else None

    def _raise_on_calendar_busy(
        self, technician_id: str, calendar_id: str, intent: OrderIntent
    ) -> None:
        """Refuse a slot the technician's own calendar already holds.

        Runs outside the booking transaction. A provider failure is logged
        and does not block the order.
        """
        start = intent.scheduled_time
        end = window_end(start, intent.estimated_duration)
        try:
            busy = self.calendar_sync.find_busy_slots(calendar_id, start, end)
        except Exception as e:
            logger.warning(
                "Free/busy lookup failed for technician %s, booking without it: %s",
                technician_id, sanitize_error_message(str(e)),
            )
            return
        if busy:
            raise ConflictError(
                "Technician has a calendar conflict during this time",
                conflicts=[slot.to_dict() for slot in busy],
            )

    def create_checkout_session(
        self,
        ctx: OrgContext | None,
        user: AuthenticatedUser,
        intent: OrderIntent,
    ) -> CheckoutResult:
        """Park an agent order as a pending order and open hosted checkout.

        Raises:
            ValidationError: Without a provider org, media types or package.
            ForbiddenError: If the agent-flow prerequisites fail.
            NotFoundError: If the package is not offered by the provider.
            ConfigurationError: If payments are not configured.
        """
        if not intent.provider_org_id:
            raise ValidationError("providerOrgId is required for checkout")
        provider, relationship = self._require_provider_relationship(
            intent.provider_org_id, user
        )
        provider_id = provider.id
        _require_media_types(intent)
        if not intent.package_id:
            raise ValidationError("Package selection is required for checkout")

        quote = calculate_total(
            self.db, intent.package_id, intent.add_on_ids, intent.add_on_quantities
        )
        if quote.package.org_id != provider.id or not quote.package.is_active:
            raise NotFoundError("ServicePackage", intent.package_id)
        if self.gateway is None:
            raise ConfigurationError("Payment processing is not configured")

        address_parts = [intent.address_line1, intent.city, intent.region]
        description = (
            f"{quote.package.name} at {', '.join(p for p in address_parts if p)}"
        )

        pending = PendingOrder(
            provider_org_id=provider.id,
            agent_user_id=user.id,
            agent_customer_id=relationship.id,
            package_id=quote.package.id,
            order_payload=encode_order_payload(intent, customer_id=relationship.id),
            status=PendingOrderStatus.pending_payment.value,
            total_amount_cents=quote.total_cents,
            currency=quote.currency,
            expires_at=utc_now() + timedelta(hours=self.config.pending_order_ttl_hours),
        )
        try:
            self.db.add(pending)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        pending_order_id = pending.id

        frontend = self.config.frontend_url.rstrip("/")
        try:
            session = self.gateway.create_checkout_session(
                pending_order_id=pending_order_id,
                amount=quote.total_cents,
                currency=quote.currency,
                customer_email=user.email,
                description=description,
                success_url=f"{frontend}/booking/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{frontend}/booking/cancel?session_id={{CHECKOUT_SESSION_ID}}",
                metadata={"agentUserId": user.id, "providerOrgId": provider_id},
            )
        except Exception:
            # Left PENDING_PAYMENT without a session; the sweep expires it
            logger.error(
                "Checkout session could not be opened for pending order %s",
                pending_order_id,
            )
            raise

        try:
            pending = self.db.get(PendingOrder, pending_order_id)
            pending.stripe_session_id = session.id
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Pending order %s awaiting payment of %d %s (session %s)",
            pending_order_id, quote.total_cents, quote.currency, session.id,
        )
        return CheckoutResult(
            checkout_url=session.url or "",
            session_id=session.id,
            pending_order_id=pending_order_id,
        )
