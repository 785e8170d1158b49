"""
BATCH LEDGER TESTS
Tests for stock batch creation and sale application against the services.

This test module covers:
- Batch creation defaults and threshold validation
- The reference scenario: 3 + 3 boxes sold, oversell of 5 rejected, then 4
- No oversell: a rejected sale leaves every row unchanged
- Depletion and alert status transitions
- Owner isolation on batch lookup
- Batch and sale listing filters
"""

import logging
from decimal import Decimal

import pytest

from stockbook import db
from stockbook.errors import (
    InsufficientStock,
    NotFound,
    ThresholdOrderingViolation,
    ValidationError,
)
from stockbook.models import Sale, StockBatch


def _sell(ledger, owner_id, batch, boxes, price='150.00', **extra):
    data = {'product_id': batch.product_id, 'batch_id': batch.id,
            'boxes_sold': boxes, 'selling_price_per_box': price}
    data.update(extra)
    return ledger.apply_sale(owner_id, data)


def _sale_count():
    return Sale.query.count()


def test_create_batch_defaults(ledger, owner, make_product):
    product = make_product(owner)
    batch = ledger.create_batch(owner, {
        'product_id': product.id,
        'boxes_purchased': '20',
        'boxes_remaining': 3,  # ignored outside bulk upload
        'quantity_per_box': 12.5,
        'unit_per_box': ' KG ',
        'cost_per_box': '99.90',
    })
    assert batch.boxes_remaining == 20
    assert batch.status == 'active'
    assert batch.alert_status == 'healthy'
    assert batch.reorder_level == 0 and batch.critical_level == 0
    assert batch.unit_per_box == 'kg'
    assert batch.quantity_per_box == Decimal('12.5')
    assert batch.cost_per_box == Decimal('99.90')


def test_create_batch_derives_alert_from_purchase(ledger, owner, make_product, make_batch):
    product = make_product(owner)
    batch = make_batch(owner, product.id, boxes_purchased=4, reorder_level=5, critical_level=2)
    assert batch.alert_status == 'warning'
    batch = make_batch(owner, product.id, boxes_purchased=2, reorder_level=5, critical_level=2)
    assert batch.alert_status == 'critical'


def test_threshold_ordering_is_enforced(owner, make_product, make_batch):
    product = make_product(owner)
    with pytest.raises(ThresholdOrderingViolation) as exc_info:
        make_batch(owner, product.id, reorder_level=5, critical_level=6)
    assert exc_info.value.http_status == 400
    assert exc_info.value.to_dict()['error'] == 'THRESHOLD_ORDERING_VIOLATION'


@pytest.mark.parametrize('field, value', [
    ('boxes_purchased', 0),
    ('boxes_purchased', 2.5),
    ('quantity_per_box', '0'),
    ('cost_per_box', '-1'),
    ('cost_per_box', 'ten'),
    ('unit_per_box', '  '),
    ('reorder_level', -1),
])
def test_create_batch_validation(owner, make_product, make_batch, field, value):
    product = make_product(owner)
    with pytest.raises(ValidationError) as exc_info:
        make_batch(owner, product.id, **{field: value})
    assert exc_info.value.field == field


def test_create_batch_for_unknown_or_foreign_product(owner, other_owner, make_product, make_batch):
    product = make_product(owner)
    with pytest.raises(NotFound):
        make_batch(owner, 9999)
    with pytest.raises(NotFound):
        make_batch(other_owner, product.id)


def test_reference_scenario(ledger, owner, make_product, make_batch):
    """
    Batch of 10 boxes at cost 100 with reorder 5 / critical 2:
    sell 3, sell 3, reject 5, sell 4.
    """
    product = make_product(owner)
    batch = make_batch(owner, product.id)

    # *** FIRST SALE: 3 boxes at 150 ***
    sale = _sell(ledger, owner, batch, 3)
    assert sale.revenue == Decimal('450')
    assert sale.batch.cost_per_box * sale.boxes_sold == Decimal('300')
    batch = ledger.get_batch(owner, batch.id)
    assert (batch.boxes_remaining, batch.alert_status, batch.status) == (7, 'healthy', 'active')

    # *** SECOND SALE: 3 boxes ***
    _sell(ledger, owner, batch, 3)
    batch = ledger.get_batch(owner, batch.id)
    assert (batch.boxes_remaining, batch.alert_status) == (4, 'warning')

    # *** OVERSELL: 5 boxes requested, 4 available ***
    with pytest.raises(InsufficientStock) as exc_info:
        _sell(ledger, owner, batch, 5)
    assert exc_info.value.requested == 5
    assert exc_info.value.available == 4
    batch = ledger.get_batch(owner, batch.id)
    assert batch.boxes_remaining == 4
    assert _sale_count() == 2

    # *** EXACT REMAINDER ***
    _sell(ledger, owner, batch, 4)
    batch = ledger.get_batch(owner, batch.id)
    assert (batch.boxes_remaining, batch.status, batch.alert_status) == (0, 'depleted', 'critical')

    with pytest.raises(InsufficientStock):
        _sell(ledger, owner, batch, 1)


def test_rejected_sale_logs_warning(ledger, owner, make_product, make_batch, caplog):
    product = make_product(owner)
    batch = make_batch(owner, product.id, boxes_purchased=1, reorder_level=0, critical_level=0)
    with caplog.at_level(logging.WARNING, logger='stockbook.ledger'):
        with pytest.raises(InsufficientStock):
            _sell(ledger, owner, batch, 2)
    assert 'requested 2, available 1' in caplog.text


def test_sale_stores_optional_fields(ledger, owner, make_product, make_batch):
    product = make_product(owner)
    batch = make_batch(owner, product.id)
    sale = _sell(ledger, owner, batch, 1, customer_name='  Cafe Luna ', notes='')
    assert sale.customer_name == 'Cafe Luna'
    assert sale.notes is None
    assert sale.selling_price_per_box == Decimal('150.00')


@pytest.mark.parametrize('overrides', [
    {'boxes_sold': 0},
    {'boxes_sold': 1.5},
    {'boxes_sold': True},
    {'selling_price_per_box': '0'},
    {'selling_price_per_box': None},
    {'batch_id': None},
])
def test_invalid_sale_writes_nothing(ledger, owner, make_product, make_batch, overrides):
    product = make_product(owner)
    batch = make_batch(owner, product.id)
    data = {'product_id': product.id, 'batch_id': batch.id, 'boxes_sold': 1,
            'selling_price_per_box': '10'}
    data.update(overrides)
    with pytest.raises(ValidationError):
        ledger.apply_sale(owner, data)
    assert _sale_count() == 0
    assert ledger.get_batch(owner, batch.id).boxes_remaining == 10


@pytest.mark.parametrize('price, message', [
    ('0.001', 'selling_price_per_box allows at most 2 decimal places'),
    ('19.999', 'selling_price_per_box allows at most 2 decimal places'),
    (0.005, 'selling_price_per_box allows at most 2 decimal places'),
    ('10000000000', 'selling_price_per_box must be less than 10000000000'),
])
def test_sale_price_that_would_be_rounded_is_rejected(ledger, owner, make_product, make_batch,
                                                      price, message):
    batch = make_batch(owner, make_product(owner).id)
    with pytest.raises(ValidationError) as exc_info:
        _sell(ledger, owner, batch, 1, price=price)
    assert exc_info.value.message == message
    assert exc_info.value.field == 'selling_price_per_box'
    assert _sale_count() == 0
    assert ledger.get_batch(owner, batch.id).boxes_remaining == 10


def test_sale_price_is_stored_exactly(ledger, owner, make_product, make_batch):
    batch = make_batch(owner, make_product(owner).id)
    sale_id = _sell(ledger, owner, batch, 1, price='19.990').id

    db.session.expire_all()
    assert db.session.get(Sale, sale_id).selling_price_per_box == Decimal('19.99')


@pytest.mark.parametrize('overrides, field', [
    ({'cost_per_box': '0.004'}, 'cost_per_box'),
    ({'cost_per_box': '12.345'}, 'cost_per_box'),
    ({'cost_per_box': '99999999999'}, 'cost_per_box'),
    ({'quantity_per_box': '0.0001'}, 'quantity_per_box'),
    ({'quantity_per_box': '1.2345'}, 'quantity_per_box'),
])
def test_batch_amounts_that_would_be_rounded_are_rejected(ledger, owner, make_product,
                                                          make_batch, overrides, field):
    product = make_product(owner)
    with pytest.raises(ValidationError) as exc_info:
        make_batch(owner, product.id, **overrides)
    assert exc_info.value.field == field
    assert StockBatch.query.count() == 0


def test_batch_amounts_at_column_scale_are_kept(ledger, owner, make_product, make_batch):
    batch_id = make_batch(owner, make_product(owner).id,
                          cost_per_box='0.01', quantity_per_box='0.125').id

    db.session.expire_all()
    batch = db.session.get(StockBatch, batch_id)
    assert batch.cost_per_box == Decimal('0.01')
    assert batch.quantity_per_box == Decimal('0.125')


def test_sale_product_must_match_batch(ledger, owner, make_product, make_batch):
    coffee = make_product(owner, sku='COFFEE')
    tea = make_product(owner, sku='TEA')
    batch = make_batch(owner, coffee.id)
    with pytest.raises(ValidationError) as exc_info:
        ledger.apply_sale(owner, {'product_id': tea.id, 'batch_id': batch.id,
                                  'boxes_sold': 1, 'selling_price_per_box': '10'})
    assert exc_info.value.field == 'product_id'
    assert _sale_count() == 0


def test_sale_against_foreign_batch_is_not_found(ledger, owner, other_owner, make_product, make_batch):
    product = make_product(owner)
    batch = make_batch(owner, product.id)
    with pytest.raises(NotFound):
        _sell(ledger, other_owner, batch, 1)
    assert ledger.get_batch(owner, batch.id).boxes_remaining == 10
    assert _sale_count() == 0

    with pytest.raises(NotFound):
        ledger.get_batch(other_owner, batch.id)


def test_get_sale_is_owner_scoped(ledger, owner, other_owner, make_product, make_batch):
    product = make_product(owner)
    sale = _sell(ledger, owner, make_batch(owner, product.id), 1)
    assert ledger.get_sale(owner, sale.id).id == sale.id
    with pytest.raises(NotFound):
        ledger.get_sale(other_owner, sale.id)


def test_list_batches_status_filter(ledger, owner, make_product, make_batch):
    product = make_product(owner)
    open_batch = make_batch(owner, product.id)
    sold_out = make_batch(owner, product.id, boxes_purchased=2, reorder_level=0, critical_level=0)
    _sell(ledger, owner, sold_out, 2)

    active = ledger.list_batches(owner, 1, 10, status='active')
    assert [b.id for b in active.rows] == [open_batch.id]
    depleted = ledger.list_batches(owner, 1, 10, status='depleted')
    assert [b.id for b in depleted.rows] == [sold_out.id]
    everything = ledger.list_batches(owner, 1, 10, status='all')
    assert everything.total == 2
    assert [b.id for b in everything.rows] == [sold_out.id, open_batch.id]

    with pytest.raises(ValidationError):
        ledger.list_batches(owner, 1, 10, status='archived')


def test_list_sales_filters_and_pages(ledger, owner, make_product, make_batch):
    coffee = make_product(owner, sku='COFFEE')
    tea = make_product(owner, sku='TEA')
    coffee_batch = make_batch(owner, coffee.id)
    tea_batch = make_batch(owner, tea.id)
    for _ in range(3):
        _sell(ledger, owner, coffee_batch, 1)
    _sell(ledger, owner, tea_batch, 1)

    page = ledger.list_sales(owner, 1, 2)
    assert page.total == 4
    assert page.has_more is True
    assert page.meta() == {'page': 1, 'limit': 2, 'total': 4, 'has_more': True}

    by_product = ledger.list_sales(owner, 1, 10, product_id=tea.id)
    assert [s.batch_id for s in by_product.rows] == [tea_batch.id]
    by_batch = ledger.list_sales(owner, 1, 10, batch_id=coffee_batch.id)
    assert by_batch.total == 3
    assert by_batch.has_more is False
