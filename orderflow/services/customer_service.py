"""Canonical customer resolution within an organization.

An order either references an existing customer or carries inline
customer details. Inline details whose email already exists in the org
reuse that customer, so the same person booked twice stays one record.

Example:
    svc = CustomerService(db)
    resolution = svc.resolve_customer(org_id, new_customer=details)
    if resolution.is_new:
        ...
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow.db.models import Customer
from orderflow.errors import ForbiddenError, NotFoundError, ValidationError
from orderflow.services.order_payload import NewCustomer
from orderflow.utils.redaction import mask_email

logger = logging.getLogger(__name__)


def normalize_email(email: str | None) -> str | None:
    """Strip and lower-case an email; blank becomes None."""
    if email is None:
        return None
    normalized = email.strip().lower()
    return normalized or None


@dataclass(frozen=True)
class CustomerResolution:
    """Outcome of resolving an order's customer."""

    customer: Customer
    is_new: bool


class CustomerService:
    """Looks up and creates customer relationships.

    Methods do NOT call db.commit(). The caller owns the transaction so a
    new customer commits or rolls back together with its project.
    """

    def __init__(self, db: Session) -> None:
        """Initialize with a SQLAlchemy session.

        Args:
            db: Active database session.
        """
        self.db = db

    def get_customer(self, org_id: str, customer_id: str) -> Customer:
        """Get a customer that must belong to ``org_id``.

        Raises:
            NotFoundError: If the customer does not exist.
            ForbiddenError: If the customer belongs to another organization.
        """
        customer = self.db.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError("Customer", customer_id)
        if customer.org_id != org_id:
            raise ForbiddenError("Customer does not belong to this organization")
        return customer

    def find_by_email(self, org_id: str, email: str) -> Customer | None:
        normalized = normalize_email(email)
        if normalized is None:
            return None
        return self.db.scalars(
            select(Customer).where(
                Customer.org_id == org_id, Customer.email == normalized
            )
        ).first()

    def find_relationship(self, org_id: str, user_id: str) -> Customer | None:
        """Find the customer record linking a platform user to an org."""
        return self.db.scalars(
            select(Customer)
            .where(Customer.org_id == org_id, Customer.user_id == user_id)
            .order_by(Customer.created_at)
        ).first()

    def resolve_customer(
        self,
        org_id: str,
        customer_id: str | None = None,
        new_customer: NewCustomer | None = None,
    ) -> CustomerResolution:
        """Resolve the customer an order is for.

        Args:
            org_id: Organization placing the order.
            customer_id: Existing customer reference; takes precedence.
            new_customer: Inline details used when no reference is given.

        Returns:
            CustomerResolution with ``is_new`` True only when a row was
            inserted by this call.

        Raises:
            ValidationError: If neither a reference nor details are given.
            NotFoundError: If the referenced customer does not exist.
            ForbiddenError: If the referenced customer is in another org.
        """
        if customer_id:
            return CustomerResolution(self.get_customer(org_id, customer_id), False)
        if new_customer is None:
            raise ValidationError("Either customerId or newCustomer is required")

        email = normalize_email(new_customer.email)
        if email is not None:
            existing = self.find_by_email(org_id, email)
            if existing is not None:
                logger.info(
                    "Reusing customer %s for %s in org %s",
                    existing.id, mask_email(email), org_id,
                )
                return CustomerResolution(existing, False)

        customer = Customer(
            org_id=org_id,
            name=new_customer.name.strip(),
            email=email,
            phone=new_customer.phone,
            notes=new_customer.notes,
        )
        try:
            with self.db.begin_nested():
                self.db.add(customer)
        except IntegrityError:
            # A concurrent request inserted the same (org, email) first
            winner = self.find_by_email(org_id, email) if email else None
            if winner is None:
                raise
            logger.info(
                "Customer %s for %s created concurrently, reusing",
                winner.id, mask_email(email),
            )
            return CustomerResolution(winner, False)

        logger.info("Created customer %s in org %s", customer.id, org_id)
        return CustomerResolution(customer, True)
