"""Price computation for appointments.

Everything here works on ``Decimal`` values. The original price of an
appointment is the base package plus every additional package at their
listed prices; rounding only happens when a percentage discount is taken.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from .errors import DiscountNotApplicable, InternalError, PackageNotFound
from .models import DiscountCode, Package

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from dragging binary noise into the result
    return Decimal(str(value))


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class DiscountBreakdown:
    discountable_amount: Decimal
    discount_amount: Decimal
    applied_to_packages: list[int] = field(default_factory=list)


def resolve_packages(package_ids: Sequence[int]) -> list[Package]:
    """Fetch packages by id, keeping the requested order.

    Fails when the number of packages found differs from the number requested,
    which also rejects an id listed twice.
    """
    if not package_ids:
        return []

    found = Package.query.filter(Package.package_id.in_(package_ids)).all()
    if len(found) != len(package_ids):
        missing = sorted(set(package_ids) - {pkg.package_id for pkg in found})
        logger.info("Additional package lookup mismatch: requested=%s missing=%s", list(package_ids), missing)
        raise PackageNotFound("One or more additional packages could not be found")

    by_id = {pkg.package_id: pkg for pkg in found}
    return [by_id[pid] for pid in package_ids]


def compute_original_price(
    base_package: Package,
    additional_package_ids: Sequence[int],
) -> tuple[Decimal, list[Package]]:
    additional = resolve_packages(additional_package_ids)
    original_price = to_decimal(base_package.price) + sum(
        (to_decimal(pkg.price) for pkg in additional), ZERO
    )
    return original_price, additional


def compute_discount(
    discount_code: DiscountCode,
    original_price: Decimal,
    packages_involved: Iterable[Package],
    applied_to_subset: Iterable[int] | None = None,
) -> DiscountBreakdown:
    packages = list(packages_involved)
    subset = None if applied_to_subset is None else {int(pid) for pid in applied_to_subset}
    candidates = [pkg for pkg in packages if subset is None or pkg.package_id in subset]

    applicable = discount_code.applicable_package_ids
    if applicable:
        targets = [pkg for pkg in candidates if pkg.package_id in applicable]
        if not targets:
            raise DiscountNotApplicable(
                f"Discount code {discount_code.code} does not apply to any selected package"
            )
        discountable = sum((to_decimal(pkg.price) for pkg in targets), ZERO)
    else:
        # Codes created before package scoping apply to the whole bill, even
        # when the caller names the packages it was meant for
        targets = candidates or packages
        discountable = to_decimal(original_price)

    if discount_code.discount_type == "percentage":
        percent = to_decimal(discount_code.discount_percent)
        amount = quantize(discountable * percent / Decimal(100))
    elif discount_code.discount_type == "fixed_amount":
        amount = min(to_decimal(discount_code.discount_amount), discountable)
    else:
        raise InternalError(f"Unsupported discount type: {discount_code.discount_type}")

    applied_ids: list[int] = []
    for pkg in targets:
        if pkg.package_id not in applied_ids:
            applied_ids.append(pkg.package_id)

    return DiscountBreakdown(
        discountable_amount=discountable,
        discount_amount=quantize(amount),
        applied_to_packages=applied_ids,
    )


def compute_final_price(original_price: Decimal, discount_amount: Decimal | None) -> Decimal:
    final = to_decimal(original_price) - to_decimal(discount_amount)
    if final < ZERO:
        return ZERO
    return quantize(final)


def split_by_list_price(amount: Decimal, packages: Sequence[Package]) -> list[tuple[Package, Decimal]]:
    """Distribute ``amount`` over bundled packages in proportion to their list prices.

    A RM50 + RM30 bundle billed at RM64 yields RM40 and RM24. Bundles where
    every package is free are split evenly.
    """
    if not packages:
        return []

    amount = to_decimal(amount)
    weights = [to_decimal(pkg.price) for pkg in packages]
    total_weight = sum(weights, ZERO)
    if total_weight <= ZERO:
        share = amount / Decimal(len(packages))
        return [(pkg, share) for pkg in packages]

    return [(pkg, amount * weight / total_weight) for pkg, weight in zip(packages, weights)]
