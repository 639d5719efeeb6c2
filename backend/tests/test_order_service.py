# Overview: Pytest coverage for all-or-nothing order settlement and stock decrement.

import pytest

from fitsuite.models import AccountingTransaction, Product, ProductVariant
from fitsuite.services import order_service, accounting_service
from fitsuite.time_utils import business_day_id
from fitsuite.services.order_service import (
    InsufficientStock,
    OrderNotFound,
    OrderSettlementError,
    ProductNotFound,
    VariantNotFound,
)


TZ = "America/Argentina/Buenos_Aires"


def _settle(gym_id, order_id, payment_id="PAY-1", **kwargs):
    return order_service.settle_order(gym_id, order_id, payment_id=payment_id, tz_name=TZ, **kwargs)


def _stock(db_session, model, obj_id):
    db_session.expire_all()
    return db_session.get(model, obj_id).stock


class TestCreateOrder:
    def test_total_from_product_prices(self, db_session, products):
        order = order_service.create_order("gym-a", [
            {"product_id": products["flat"].id, "quantity": 2},
            {"product_id": products["shirt"].id, "quantity": 1, "color": "red", "size": "m"},
        ])
        assert order.status == "pending"
        assert order.total_cents == 2 * 500 + 1500
        assert len(order.lines) == 2

    def test_unknown_product(self, db_session, products):
        with pytest.raises(ProductNotFound):
            order_service.create_order("gym-a", [{"product_id": 9999, "quantity": 1}])

    @pytest.mark.parametrize("quantity", [0, -1, "2", None, True])
    def test_invalid_quantity(self, db_session, products, quantity):
        with pytest.raises(OrderSettlementError):
            order_service.create_order("gym-a", [{"product_id": products["flat"].id, "quantity": quantity}])

    def test_empty_order(self, db_session, products):
        with pytest.raises(OrderSettlementError):
            order_service.create_order("gym-a", [])


class TestSettlement:
    def test_settles_and_decrements(self, db_session, products):
        flat_id = products["flat"].id
        order = order_service.create_order("gym-a", [{"product_id": flat_id, "quantity": 2}])

        result = _settle("gym-a", order.id, method="cash")

        assert result.already_paid is False
        assert result.order.status == "paid"
        assert result.order.payment_id == "PAY-1"
        assert result.order.amount_paid_cents == 1000
        assert _stock(db_session, Product, flat_id) == 3

    def test_variant_is_matched_case_insensitively(self, db_session, products):
        shirt = products["shirt"]
        order = order_service.create_order("gym-a", [
            {"product_id": shirt.id, "quantity": 3, "color": "BLUE", "size": " l "},
        ])
        _settle("gym-a", order.id)

        blue = db_session.query(ProductVariant).filter_by(product_id=shirt.id, color="Blue").one()
        red = db_session.query(ProductVariant).filter_by(product_id=shirt.id, color="Red").one()
        assert _stock(db_session, ProductVariant, blue.id) == 1
        assert _stock(db_session, ProductVariant, red.id) == 1

    def test_insufficient_item_fails_whole_order(self, db_session, products):
        """Item A has enough stock, item B does not: nothing moves."""
        flat_id = products["flat"].id
        shirt = products["shirt"]
        order = order_service.create_order("gym-a", [
            {"product_id": flat_id, "quantity": 2},
            {"product_id": shirt.id, "quantity": 2, "color": "Red", "size": "M"},
        ])

        with pytest.raises(InsufficientStock) as exc:
            _settle("gym-a", order.id)

        assert exc.value.details["items"][0]["available"] == 1
        assert _stock(db_session, Product, flat_id) == 5
        red = db_session.query(ProductVariant).filter_by(product_id=shirt.id, color="Red").one()
        assert red.stock == 1
        assert order_service.get_order("gym-a", order.id).status == "pending"
        assert db_session.query(AccountingTransaction).count() == 0

    def test_repeated_lines_are_summed(self, db_session, products):
        flat_id = products["flat"].id
        order = order_service.create_order("gym-a", [
            {"product_id": flat_id, "quantity": 3},
            {"product_id": flat_id, "quantity": 3},
        ])
        with pytest.raises(InsufficientStock):
            _settle("gym-a", order.id)
        assert _stock(db_session, Product, flat_id) == 5

    def test_unknown_variant(self, db_session, products):
        order = order_service.create_order("gym-a", [
            {"product_id": products["shirt"].id, "quantity": 1, "color": "Green", "size": "M"},
        ])
        with pytest.raises(VariantNotFound):
            _settle("gym-a", order.id)
        assert order_service.get_order("gym-a", order.id).status == "pending"

    def test_unknown_order(self, db_session, products):
        with pytest.raises(OrderNotFound):
            _settle("gym-a", 424242)

    def test_already_paid_is_idempotent(self, db_session, products):
        flat_id = products["flat"].id
        order = order_service.create_order("gym-a", [{"product_id": flat_id, "quantity": 1}])
        _settle("gym-a", order.id)

        again = _settle("gym-a", order.id, payment_id="PAY-2")

        assert again.already_paid is True
        assert again.order.payment_id == "PAY-1"
        assert _stock(db_session, Product, flat_id) == 4
        assert db_session.query(AccountingTransaction).count() == 1

    def test_payment_cannot_settle_two_orders(self, db_session, products):
        flat_id = products["flat"].id
        first = order_service.create_order("gym-a", [{"product_id": flat_id, "quantity": 1}])
        second = order_service.create_order("gym-a", [{"product_id": flat_id, "quantity": 1}])
        _settle("gym-a", first.id)
        with pytest.raises(OrderSettlementError):
            _settle("gym-a", second.id)

    def test_settlement_feeds_accounting(self, db_session, products):
        order = order_service.create_order("gym-a", [{"product_id": products["flat"].id, "quantity": 2}])
        result = _settle("gym-a", order.id, method="efectivo", amount_paid_cents=900)

        txn = db_session.query(AccountingTransaction).one()
        assert txn.type == "store"
        assert txn.medium == "cash"
        assert txn.amount_cents == 900

        day = business_day_id(result.order.paid_at, TZ)
        rollup = accounting_service.get_rollup("gym-a", "day", day)
        assert rollup["income"]["storeSale"] == {"count": 1, "total": 900, "cashTotal": 900, "onlineTotal": 0}
