"""Price computation on plain model instances; no database needed."""
from __future__ import annotations

from decimal import Decimal

import pytest

from barbershop.errors import DiscountNotApplicable
from barbershop.models import DiscountCode, Package
from barbershop.pricing import (compute_discount, compute_final_price,
                                split_by_list_price)


def _package(package_id, price):
    return Package(package_id=package_id, name=f"Package {package_id}", price=Decimal(price))


def _code(code="SAVE10", discount_type="percentage", percent=None, amount=None, applicable=None):
    return DiscountCode(
        code=code,
        discount_type=discount_type,
        discount_percent=percent,
        discount_amount=Decimal(amount) if amount is not None else None,
        applicable_packages=applicable or [],
    )


@pytest.fixture
def bundle():
    return [_package(1, "50.00"), _package(2, "30.00")]


def test_percentage_code_for_all_packages(bundle):
    breakdown = compute_discount(_code(percent=10.0), Decimal("80.00"), bundle)

    assert breakdown.discountable_amount == Decimal("80.00")
    assert breakdown.discount_amount == Decimal("8.00")
    assert breakdown.applied_to_packages == [1, 2]
    assert compute_final_price(Decimal("80.00"), breakdown.discount_amount) == Decimal("72.00")


def test_restricted_code_only_discounts_matching_packages(bundle):
    breakdown = compute_discount(_code(percent=10.0, applicable=[2]), Decimal("80.00"), bundle)

    assert breakdown.discountable_amount == Decimal("30.00")
    assert breakdown.discount_amount == Decimal("3.00")
    assert breakdown.applied_to_packages == [2]
    assert compute_final_price(Decimal("80.00"), breakdown.discount_amount) == Decimal("77.00")


def test_restricted_code_without_matching_package_is_rejected(bundle):
    with pytest.raises(DiscountNotApplicable):
        compute_discount(_code(percent=10.0, applicable=[99]), Decimal("80.00"), bundle)


def test_unrestricted_code_with_subset_still_covers_whole_bill(bundle):
    breakdown = compute_discount(_code(percent=50.0), Decimal("80.00"), bundle, applied_to_subset=[1])

    assert breakdown.discountable_amount == Decimal("80.00")
    assert breakdown.discount_amount == Decimal("40.00")
    assert breakdown.applied_to_packages == [1]


def test_restricted_code_with_subset_uses_intersection(bundle):
    breakdown = compute_discount(
        _code(percent=10.0, applicable=[1, 2]), Decimal("80.00"), bundle, applied_to_subset=[2]
    )

    assert breakdown.discountable_amount == Decimal("30.00")
    assert breakdown.discount_amount == Decimal("3.00")


def test_fixed_amount_is_clamped_to_discountable_amount(bundle):
    breakdown = compute_discount(
        _code(code="BIG", discount_type="fixed_amount", amount="45.00", applicable=[2]),
        Decimal("80.00"),
        bundle,
    )

    assert breakdown.discount_amount == Decimal("30.00")


def test_percentage_rounds_half_up():
    breakdown = compute_discount(_code(percent=15.0), Decimal("12.50"), [_package(1, "12.50")])

    # 1.875 -> 1.88
    assert breakdown.discount_amount == Decimal("1.88")


def test_final_price_never_negative():
    assert compute_final_price(Decimal("20.00"), Decimal("25.00")) == Decimal("0")
    assert compute_final_price(Decimal("20.00"), None) == Decimal("20.00")


def test_split_by_list_price_is_proportional(bundle):
    shares = split_by_list_price(Decimal("64.00"), bundle)

    assert [(pkg.package_id, amount) for pkg, amount in shares] == [(1, Decimal("40")), (2, Decimal("24"))]


def test_split_by_list_price_even_when_all_free():
    shares = split_by_list_price(Decimal("10.00"), [_package(1, "0"), _package(2, "0")])

    assert [amount for _, amount in shares] == [Decimal("5"), Decimal("5")]
