"""
Batch ledger: stock batch creation and sale application.

A sale is applied as a two-step saga against the store:

    1. record_sale      insert the Sale row          (undo: delete it)
    2. decrement_batch  conditional update of the batch, keyed on the
                        boxes_remaining value read before step 1

The store commits each step separately, so if step 2 fails the Sale row
from step 1 is deleted before the error reaches the caller. A Sale row
therefore never outlives a failed decrement. A decrement never runs
without a recorded sale because it only starts after step 1 succeeded.
"""

from .errors import InsufficientStock, NotFound, ThresholdOrderingViolation, ValidationError
from .logging_config import get_logger
from .models import BATCH_STATUSES, MONEY_SCALE, QUANTITY_SCALE, Sale, StockBatch
from .saga import Saga, Step
from .validation import clean_str, parse_timestamp, require_str, to_decimal, to_int

log = get_logger('ledger')


def derive_alert_status(remaining, reorder_level, critical_level):
    """critical at or below critical_level, warning at or below reorder_level, else healthy."""
    if remaining <= critical_level:
        return 'critical'
    if remaining <= reorder_level:
        return 'warning'
    return 'healthy'


def derive_status(remaining):
    return 'depleted' if remaining == 0 else 'active'


def validate_batch_fields(data, allow_remaining=False):
    """
    Validate a stock batch payload and return normalised fields.

    ``boxes_remaining`` is only read when ``allow_remaining`` is set (bulk
    opening balances); otherwise it always starts at ``boxes_purchased``.
    """
    boxes_purchased = to_int(data.get('boxes_purchased'), 'boxes_purchased', minimum=1)
    quantity_per_box = to_decimal(data.get('quantity_per_box'), 'quantity_per_box',
                                  places=QUANTITY_SCALE)
    unit_per_box = require_str(data, 'unit_per_box').lower()
    cost_per_box = to_decimal(data.get('cost_per_box'), 'cost_per_box', places=MONEY_SCALE)
    reorder_level = to_int(data.get('reorder_level'), 'reorder_level', minimum=0, default=0)
    critical_level = to_int(data.get('critical_level'), 'critical_level', minimum=0, default=0)
    if critical_level > reorder_level:
        raise ThresholdOrderingViolation(reorder_level, critical_level)

    boxes_remaining = boxes_purchased
    if allow_remaining and data.get('boxes_remaining') not in (None, ''):
        boxes_remaining = to_int(data.get('boxes_remaining'), 'boxes_remaining', minimum=0)
        if boxes_remaining > boxes_purchased:
            raise ValidationError('boxes_remaining cannot exceed boxes_purchased', field='boxes_remaining')

    return {
        'batch_number': clean_str(data.get('batch_number')),
        'boxes_purchased': boxes_purchased,
        'boxes_remaining': boxes_remaining,
        'quantity_per_box': quantity_per_box,
        'unit_per_box': unit_per_box,
        'cost_per_box': cost_per_box,
        'supplier_name': clean_str(data.get('supplier_name')),
        'reorder_level': reorder_level,
        'critical_level': critical_level,
        'alert_status': derive_alert_status(boxes_remaining, reorder_level, critical_level),
        'status': derive_status(boxes_remaining),
    }


class BatchLedger:
    def __init__(self, store):
        self.store = store

    # ---- batches ----

    def build_batch(self, owner_id, data, allow_remaining=False):
        """Validated, unsaved StockBatch for one of the owner's products."""
        product_id = to_int(data.get('product_id'), 'product_id')
        fields = validate_batch_fields(data, allow_remaining=allow_remaining)
        if self.store.get_product(owner_id, product_id) is None:
            raise NotFound('Product', product_id)
        return StockBatch(owner_id=owner_id, product_id=product_id, **fields)

    def create_batch(self, owner_id, data, allow_remaining=False):
        batch = self.store.insert_batch(self.build_batch(owner_id, data, allow_remaining))
        log.info('batch %s created for product %s: %d boxes, alert=%s (owner=%s)',
                 batch.id, batch.product_id, batch.boxes_remaining, batch.alert_status, owner_id)
        return batch

    def create_batches(self, owner_id, specs, allow_remaining=False):
        """
        Create several batches in one commit. Every spec is built first, so a
        bad spec or a failed commit leaves no batch behind.
        """
        batches = [self.build_batch(owner_id, spec, allow_remaining) for spec in specs]
        self.store.insert_batches(batches)
        log.info('created %d batches in one commit (owner=%s)', len(batches), owner_id)
        return batches

    def get_batch(self, owner_id, batch_id):
        batch = self.store.get_batch(owner_id, batch_id)
        if batch is None:
            raise NotFound('Batch', batch_id)
        return batch

    def list_batches(self, owner_id, page, limit, product_id=None, status=None,
                     from_date=None, to_date=None):
        if status == 'all':
            status = None
        if status is not None and status not in BATCH_STATUSES:
            raise ValidationError("status must be 'active', 'depleted' or 'all'", field='status')
        return self.store.list_batches(owner_id, page, limit, product_id=product_id, status=status,
                                       from_date=from_date, to_date=to_date)

    # ---- sales ----

    def apply_sale(self, owner_id, data):
        """
        Record a sale against one batch and decrement the batch.

        Raises ValidationError, NotFound or InsufficientStock before anything
        is written. After the Sale insert, a failed decrement is compensated
        by deleting the sale and the decrement's error (ConcurrentModification
        or PersistenceError) is re-raised; CompensationFailure if the delete
        fails too.
        """
        product_id = to_int(data.get('product_id'), 'product_id')
        batch_id = to_int(data.get('batch_id'), 'batch_id')
        boxes_sold = to_int(data.get('boxes_sold'), 'boxes_sold', minimum=1)
        price = to_decimal(data.get('selling_price_per_box'), 'selling_price_per_box',
                           places=MONEY_SCALE)
        created_at = parse_timestamp(data.get('created_at'), 'created_at')

        batch = self.store.get_batch(owner_id, batch_id)
        if batch is None:
            raise NotFound('Batch', batch_id)
        if batch.product_id != product_id:
            raise ValidationError(f'Batch {batch_id} does not belong to product {product_id}',
                                  field='product_id')

        available = batch.boxes_remaining
        if boxes_sold > available:
            log.warning('sale rejected on batch %s: requested %d, available %d (owner=%s)',
                        batch_id, boxes_sold, available, owner_id)
            raise InsufficientStock(batch_id, boxes_sold, available)

        new_remaining = available - boxes_sold
        new_status = derive_status(new_remaining)
        new_alert = derive_alert_status(new_remaining, batch.reorder_level, batch.critical_level)

        sale = Sale(
            owner_id=owner_id,
            product_id=product_id,
            batch_id=batch_id,
            boxes_sold=boxes_sold,
            selling_price_per_box=price,
            customer_name=clean_str(data.get('customer_name')),
            notes=clean_str(data.get('notes')),
        )
        if created_at is not None:
            sale.created_at = created_at  # backdated entry, e.g. from a sales CSV

        def record_sale():
            return self.store.insert_sale(sale).id

        def remove_sale(sale_id):
            self.store.delete_sale(owner_id, sale_id)

        def decrement_batch():
            self.store.decrement_batch(owner_id, batch_id, available, new_remaining,
                                       new_status, new_alert)

        sale_id, _ = Saga('apply_sale', [
            Step('record_sale', record_sale, remove_sale),
            Step('decrement_batch', decrement_batch),
        ]).run()

        log.info('sale %s applied to batch %s: %d boxes, remaining %d, status=%s, alert=%s (owner=%s)',
                 sale_id, batch_id, boxes_sold, new_remaining, new_status, new_alert, owner_id)
        return self.get_sale(owner_id, sale_id)

    def get_sale(self, owner_id, sale_id):
        sale = self.store.get_sale(owner_id, sale_id)
        if sale is None:
            raise NotFound('Sale', sale_id)
        return sale

    def list_sales(self, owner_id, page, limit, product_id=None, batch_id=None,
                   from_date=None, to_date=None):
        return self.store.list_sales(owner_id, page, limit, product_id=product_id, batch_id=batch_id,
                                     from_date=from_date, to_date=to_date)
