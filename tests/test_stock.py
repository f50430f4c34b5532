from types import SimpleNamespace

import pytest

from commerce.exceptions import InsufficientStock, NotFound, ValidationFailed
from commerce.stock import StockReconciler

pytestmark = pytest.mark.django_db


@pytest.fixture
def stock():
    return StockReconciler()


def test_deduct_product(stock, widget):
    stock.deduct(widget.pk, None, 4)
    widget.refresh_from_db()
    assert widget.stock_quantity == 6


def test_deduct_variant_leaves_product_alone(stock, widget, red_widget):
    stock.deduct(widget.pk, red_widget.pk, 2)
    widget.refresh_from_db()
    red_widget.refresh_from_db()
    assert red_widget.stock_quantity == 3
    assert widget.stock_quantity == 10


def test_deduct_exact_remaining(stock, widget):
    stock.deduct(widget.pk, None, 10)
    widget.refresh_from_db()
    assert widget.stock_quantity == 0


def test_deduct_more_than_available(stock, widget):
    with pytest.raises(InsufficientStock) as exc:
        stock.deduct(widget.pk, None, 11)
    assert 'Available: 10, Requested: 11' in str(exc.value)
    widget.refresh_from_db()
    assert widget.stock_quantity == 10


def test_deduct_missing_row(stock):
    with pytest.raises(NotFound):
        stock.deduct(9999, None, 1)


def test_deduct_rejects_non_positive(stock, widget):
    with pytest.raises(ValidationFailed):
        stock.deduct(widget.pk, None, 0)


def test_restore_items(stock, widget, red_widget):
    items = [
        SimpleNamespace(product_id=widget.pk, variant_id=None, quantity=2),
        SimpleNamespace(product_id=widget.pk, variant_id=red_widget.pk, quantity=1),
    ]
    stock.restore(items)
    widget.refresh_from_db()
    red_widget.refresh_from_db()
    assert widget.stock_quantity == 12
    assert red_widget.stock_quantity == 6


def test_restore_missing_row_is_skipped(stock):
    stock.restore_quantity(9999, None, 3)


def test_adjust_for_quantity_change(stock, widget):
    stock.adjust_for_quantity_change(widget.pk, None, 3)
    widget.refresh_from_db()
    assert widget.stock_quantity == 7

    stock.adjust_for_quantity_change(widget.pk, None, -5)
    widget.refresh_from_db()
    assert widget.stock_quantity == 12

    stock.adjust_for_quantity_change(widget.pk, None, 0)
    widget.refresh_from_db()
    assert widget.stock_quantity == 12
