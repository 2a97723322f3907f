"""Tests de precios, tasas y códigos promocionales"""
from datetime import timedelta
from decimal import Decimal

import pytest

from shared.database.models import DiscountType, OrderStatus, PromoCode
from shared.errors import NotFoundError, PromoCodeUsageLimitError, ValidationError
from shared.utils.clock import utcnow
from services.ticket_purchase.services.pricing_service import (
    claim_promo_use,
    compute_discount,
    compute_service_fee,
    compute_totals,
    preview_discount,
    price_item,
    release_promo_use,
    round2,
    validate_promo,
)
from tests.fixtures import make_promo, make_ticket_type, order_request, reload


class TestPriceItem:
    async def test_full_price(self, ticket_type):
        line = price_item(ticket_type, 3, False)
        assert line.unit_price == Decimal("100.00")
        assert line.total_price == Decimal("300.00")

    async def test_half_price_uses_half_price_value(self, db, event):
        tt = await make_ticket_type(
            db, event, has_half_price=True, half_price=Decimal("50.00"), half_price_quantity=10
        )
        line = price_item(tt, 2, True)
        assert line.unit_price == Decimal("50.00")
        assert line.total_price == Decimal("100.00")

    async def test_half_price_not_offered(self, ticket_type):
        with pytest.raises(ValidationError):
            price_item(ticket_type, 1, True)


class TestServiceFee:
    async def test_three_percent_on_hundred(self, db, event):
        tt = await make_ticket_type(db, event, service_fee_percentage=Decimal("3"))
        lines = [price_item(tt, 1, False)]

        totals = compute_totals(lines)

        assert totals.service_fee == Decimal("3.00")
        assert totals.total == Decimal("103.00")

    async def test_absorbed_fee_is_not_charged(self, db, event):
        tt = await make_ticket_type(db, event, service_fee_percentage=Decimal("10"), absorb_service_fee=True)
        assert compute_service_fee([price_item(tt, 2, False)]) == Decimal("0.00")

    async def test_fee_rounded_per_line(self, db, event):
        tt = await make_ticket_type(db, event, price=Decimal("33.33"), service_fee_percentage=Decimal("2.5"))
        # 33.33 * 1 * 2.5 / 100 = 0.83325 -> 0.83
        assert compute_service_fee([price_item(tt, 1, False), price_item(tt, 1, False)]) == Decimal("1.66")


class TestDiscount:
    def test_percentage_capped_by_max_discount(self):
        promo = PromoCode(
            code="TECH20",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("20"),
            max_discount_amount=Decimal("80"),
        )
        assert compute_discount(promo, Decimal("500.00")) == Decimal("80.00")

    def test_percentage_without_cap(self):
        promo = PromoCode(code="X", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("20"))
        assert compute_discount(promo, Decimal("500.00")) == Decimal("100.00")

    def test_fixed_discount_is_not_capped_to_subtotal(self):
        promo = PromoCode(code="X", discount_type=DiscountType.FIXED, discount_value=Decimal("150"))
        assert compute_discount(promo, Decimal("100.00")) == Decimal("150.00")

    async def test_total_never_negative(self, ticket_type):
        promo = PromoCode(code="X", discount_type=DiscountType.FIXED, discount_value=Decimal("150"))
        with pytest.raises(ValidationError):
            compute_totals([price_item(ticket_type, 1, False)], promo)

    async def test_total_identity(self, db, event):
        tt = await make_ticket_type(db, event, price=Decimal("59.90"), service_fee_percentage=Decimal("5"))
        promo = PromoCode(code="X", discount_type=DiscountType.FIXED, discount_value=Decimal("10"))

        totals = compute_totals([price_item(tt, 3, False)], promo, platform_fee=Decimal("1.50"))

        assert totals.total == totals.subtotal + totals.service_fee + totals.platform_fee - totals.discount
        assert totals.total >= 0
        assert not totals.is_free

    def test_round2_half_up(self):
        assert round2(Decimal("0.005")) == Decimal("0.01")
        assert round2("2.675") == Decimal("2.68")


class TestValidatePromo:
    async def test_code_is_case_insensitive(self, db, event):
        await make_promo(db, event, code="TECH20")
        promo = await validate_promo(db, event.id, " tech20 ", Decimal("100"))
        assert promo.code == "TECH20"

    async def test_unknown_code(self, db, event):
        with pytest.raises(NotFoundError):
            await validate_promo(db, event.id, "NOPE", Decimal("100"))

    async def test_inactive(self, db, event):
        await make_promo(db, event, is_active=False)
        with pytest.raises(ValidationError):
            await validate_promo(db, event.id, "TECH20", Decimal("100"))

    async def test_outside_validity_window(self, db, event):
        await make_promo(db, event, code="FUTURE", valid_from=utcnow() + timedelta(days=1))
        await make_promo(db, event, code="PAST", valid_until=utcnow() - timedelta(minutes=1))

        with pytest.raises(ValidationError):
            await validate_promo(db, event.id, "FUTURE", Decimal("100"))
        with pytest.raises(ValidationError):
            await validate_promo(db, event.id, "PAST", Decimal("100"))

    async def test_minimum_order_value(self, db, event):
        await make_promo(db, event, min_order_value=Decimal("200"))
        with pytest.raises(ValidationError):
            await validate_promo(db, event.id, "TECH20", Decimal("199.99"))
        assert await validate_promo(db, event.id, "TECH20", Decimal("200"))

    async def test_max_uses_reached(self, db, event):
        await make_promo(db, event, max_uses=2, current_uses=2)
        with pytest.raises(PromoCodeUsageLimitError):
            await validate_promo(db, event.id, "TECH20", Decimal("100"))

    async def test_uses_per_user_ignores_released_orders(self, db, event, buyer, ticket_type, order_service):
        await make_promo(db, event, uses_per_user=1)
        order = await order_service.create_order(db, buyer.id, order_request(event, (ticket_type, 1), promo_code="TECH20"))

        with pytest.raises(PromoCodeUsageLimitError):
            await validate_promo(db, event.id, "TECH20", Decimal("100"), buyer.id)

        await order_service.cancel_order(db, order.id, buyer.id, buyer.role.value)
        assert (await reload(db, type(order), order.id)).status == OrderStatus.CANCELLED
        assert await validate_promo(db, event.id, "TECH20", Decimal("100"), buyer.id)


class TestPromoUsageCounter:
    async def test_claim_stops_at_max_uses(self, db, event):
        promo = await make_promo(db, event, max_uses=1)

        await claim_promo_use(db, promo)
        await db.commit()
        with pytest.raises(PromoCodeUsageLimitError):
            await claim_promo_use(db, promo)

    async def test_release_never_goes_below_zero(self, db, event):
        promo = await make_promo(db, event, current_uses=0)

        await release_promo_use(db, promo.id)
        await db.commit()

        assert (await reload(db, PromoCode, promo.id)).current_uses == 0


class TestPreviewDiscount:
    def test_fixed_discount_capped_to_subtotal(self):
        promo = PromoCode(code="X", discount_type=DiscountType.FIXED, discount_value=Decimal("150"))
        assert preview_discount(promo, Decimal("100")) == (Decimal("100.00"), Decimal("0.00"))

    def test_percentage_discount(self):
        promo = PromoCode(code="X", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("20"))
        assert preview_discount(promo, Decimal("250.00")) == (Decimal("50.00"), Decimal("200.00"))
