"""Package pricing for checkout.

Totals are integers in the package currency's minor units. Add-ons are
priced from the active add-ons of the package's own organization; ids
that do not match one are ignored.
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.db.models import PackageAddOn, ServicePackage
from orderflow.errors import NotFoundError


@dataclass(frozen=True)
class PriceQuote:
    """Computed price of a package plus add-ons."""

    package: ServicePackage
    total_cents: int
    currency: str


def calculate_total(
    db: Session,
    package_id: str,
    add_on_ids: list[str] | None = None,
    add_on_quantities: dict[str, int] | None = None,
) -> PriceQuote:
    """Price a package with its selected add-ons.

    Args:
        db: Active database session.
        package_id: Service package to price.
        add_on_ids: Selected add-on ids.
        add_on_quantities: Quantity per add-on id; missing entries count 1.

    Returns:
        PriceQuote with the package and the total in minor units.

    Raises:
        NotFoundError: If the package does not exist.
    """
    package = db.get(ServicePackage, package_id)
    if package is None:
        raise NotFoundError("ServicePackage", package_id)

    total = package.price_cents
    if add_on_ids:
        quantities = add_on_quantities or {}
        add_ons = db.scalars(
            select(PackageAddOn).where(
                PackageAddOn.id.in_(add_on_ids),
                PackageAddOn.org_id == package.org_id,
                PackageAddOn.is_active.is_(True),
            )
        ).all()
        for add_on in add_ons:
            total += add_on.price_cents * max(quantities.get(add_on.id, 1), 0)

    return PriceQuote(package=package, total_cents=total, currency=package.currency)
