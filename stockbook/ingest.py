"""
Bulk ingestion of stock batches, products and sales from CSV uploads.

Parsing validates every row up front and fails the whole upload on the
first bad row ("Row N: ..." where N is the line number, header = line 1).
Stock and product uploads write nothing until the whole file has been
parsed and every SKU resolved, and then write all rows in one commit.

Sales uploads are different: every row is a full sale application with
its own stock check and compensation, applied in file order. The upload
stops at the first row the ledger rejects and reports it; rows before it
stay applied.
"""

import csv
import io
from dataclasses import dataclass, field
from typing import List, Optional

from .catalog import MAX_BULK_PRODUCTS, normalize_product
from .errors import StockbookError, ValidationError
from .ledger import validate_batch_fields
from .logging_config import get_logger
from .models import MONEY_SCALE
from .validation import clean_str, parse_timestamp, to_decimal, to_int

log = get_logger('ingest')

MAX_STOCK_ROWS = 100
MAX_SALES_ROWS = 100

STOCK_REQUIRED = ('sku', 'boxes_purchased', 'quantity_per_box', 'unit_per_box', 'cost_per_box')
STOCK_COLUMNS = ('sku', 'batch_number', 'boxes_purchased', 'boxes_remaining', 'quantity_per_box',
                 'unit_per_box', 'cost_per_box', 'supplier_name', 'reorder_level', 'critical_level')

PRODUCT_REQUIRED = ('sku', 'name', 'unit_type', 'base_unit')
PRODUCT_COLUMNS = ('sku', 'name', 'category', 'description', 'unit_type', 'base_unit',
                   'default_supplier')

SALES_REQUIRED = ('product_id', 'batch_id', 'boxes_sold', 'selling_price_per_box')
SALES_COLUMNS = SALES_REQUIRED + ('customer_name', 'notes', 'created_at')


def _normalize_header(name):
    return '_'.join(name.strip().lower().replace('"', '').split())


def _read_rows(text, required, max_rows, what):
    """Return (line_number, row dict) for every non-blank data line."""
    reader = csv.reader(io.StringIO(text.strip()))
    try:
        header = next(reader)
    except StopIteration:
        raise ValidationError('CSV must contain header and at least one data row')
    headers = [_normalize_header(h) for h in header]

    missing = [h for h in required if h not in headers]
    if missing:
        raise ValidationError(f"Missing required headers: {', '.join(missing)}")

    rows = []
    for values in reader:
        line = reader.line_num
        if not any(v.strip() for v in values):
            continue
        if len(values) != len(headers):
            raise ValidationError(f'Row {line}: Expected {len(headers)} columns, got {len(values)}')
        rows.append((line, {h: v.strip() for h, v in zip(headers, values)}))

    if not rows:
        raise ValidationError('CSV must contain header and at least one data row')
    if len(rows) > max_rows:
        raise ValidationError(f'Maximum {max_rows} {what} per upload')
    return rows


def parse_stock_csv(text):
    """Parse a stock batch CSV into validated rows keyed by upper-cased SKU."""
    parsed = []
    for line, raw in _read_rows(text, STOCK_REQUIRED, MAX_STOCK_ROWS, 'stock batches'):
        sku = raw.get('sku', '').upper()
        if not sku:
            raise ValidationError(f'Row {line}: SKU is required', field='sku')
        try:
            fields = validate_batch_fields(raw, allow_remaining=True)
        except ValidationError as exc:
            raise ValidationError(f'Row {line}: {exc.message}', field=exc.field) from exc
        parsed.append(dict(fields, sku=sku))
    return parsed


def parse_product_csv(text):
    parsed = []
    for line, raw in _read_rows(text, PRODUCT_REQUIRED, MAX_BULK_PRODUCTS, 'products'):
        try:
            parsed.append(normalize_product(raw))
        except ValidationError as exc:
            raise ValidationError(f'Row {line}: {exc.message}', field=exc.field) from exc
    return parsed


def parse_sales_csv(text):
    """
    Parse a sales CSV into ``(line_number, sale_data)`` pairs.

    Only the row shape is checked here (ids, boxes, price, timestamp); stock
    and ownership are checked when each sale is applied.
    """
    parsed = []
    for line, raw in _read_rows(text, SALES_REQUIRED, MAX_SALES_ROWS, 'sales'):
        try:
            data = {
                'product_id': to_int(raw['product_id'], 'product_id', minimum=1),
                'batch_id': to_int(raw['batch_id'], 'batch_id', minimum=1),
                'boxes_sold': to_int(raw['boxes_sold'], 'boxes_sold', minimum=1),
                'selling_price_per_box': to_decimal(raw['selling_price_per_box'],
                                                    'selling_price_per_box', places=MONEY_SCALE),
                'customer_name': clean_str(raw.get('customer_name')),
                'notes': clean_str(raw.get('notes')),
                'created_at': parse_timestamp(raw.get('created_at'), 'created_at'),
            }
        except ValidationError as exc:
            raise ValidationError(f'Row {line}: {exc.message}', field=exc.field) from exc
        parsed.append((line, data))
    return parsed


def _template(columns, examples):
    out = io.StringIO()
    writer = csv.writer(out, lineterminator='\n')
    writer.writerow(columns)
    writer.writerows(examples)
    return out.getvalue()


def stock_template():
    return _template(STOCK_COLUMNS, [
        ('SKU-COFFEE-001', 'BATCH-COFFEE-0001', '500', '500', '25', 'kg', '350.00',
         'Global Coffee Co.', '50', '20'),
        ('SKU-TEA-002', 'BATCH-TEA-0001', '400', '400', '10', 'kg', '200.00',
         'Tea Masters Ltd.', '40', '15'),
    ])


def product_template():
    return _template(PRODUCT_COLUMNS, [
        ('SKU-COFFEE-001', 'Premium Coffee', 'Beverages', 'Arabica beans', 'weight', 'kg',
         'Global Coffee Co.'),
        ('SKU-CUP-003', 'Paper Cups', 'Supplies', '', 'count', 'box', ''),
    ])


def sales_template():
    return _template(SALES_COLUMNS, [
        ('1', '1', '5', '3500.00', 'Usman', 'Bulk order', '2026-02-18T10:00:00Z'),
        ('2', '3', '10', '3300.00', 'Ahmed', 'Regular customer', '2026-02-18T11:00:00Z'),
    ])


@dataclass
class SalesUpload:
    """Outcome of a sales CSV upload: the sales applied and the row that stopped it."""

    total_rows: int
    applied: List = field(default_factory=list)
    failed_row: Optional[int] = None
    error: Optional[StockbookError] = None

    @property
    def http_status(self):
        return 201 if self.error is None else self.error.http_status

    def to_dict(self):
        body = {
            'success': self.error is None,
            'total_rows': self.total_rows,
            'inserted_count': len(self.applied),
            'data': [sale.to_dict() for sale in self.applied],
        }
        if self.error is not None:
            details = self.error.to_dict()
            details['message'] = f"Row {self.failed_row}: {details['message']}"
            body.update(details, failed_row=self.failed_row)
        return body


class BulkIngestor:
    def __init__(self, catalog, ledger, store):
        self.catalog = catalog
        self.ledger = ledger
        self.store = store

    def ingest_stock(self, owner_id, text):
        """Create one batch per CSV row, all in one commit, once every SKU resolves."""
        rows = parse_stock_csv(text)
        skus = sorted({row['sku'] for row in rows})
        products = {p.sku: p.id for p in self.store.products_by_sku(owner_id, skus)}
        missing = [sku for sku in skus if sku not in products]
        if missing:
            error = ValidationError(
                f"The following SKUs do not exist: {', '.join(missing)}. "
                'Please create these products first.', field='sku')
            error.missing_skus = missing
            raise error

        specs = [dict(row, product_id=products[row['sku']]) for row in rows]
        batches = self.ledger.create_batches(owner_id, specs, allow_remaining=True)
        log.info('bulk upload created %d batches (owner=%s)', len(batches), owner_id)
        return batches

    def ingest_products(self, owner_id, text):
        return self.catalog.bulk_create(owner_id, parse_product_csv(text))

    def ingest_sales(self, owner_id, text):
        """Apply every CSV sale in file order, stopping at the first rejected row."""
        rows = parse_sales_csv(text)
        upload = SalesUpload(total_rows=len(rows))
        for line, data in rows:
            try:
                upload.applied.append(self.ledger.apply_sale(owner_id, data))
            except StockbookError as exc:
                log.warning('sales upload stopped at row %d after %d sale(s): %s (owner=%s)',
                            line, len(upload.applied), exc.message, owner_id)
                upload.failed_row = line
                upload.error = exc
                break
        else:
            log.info('sales upload applied %d sales (owner=%s)', len(upload.applied), owner_id)
        return upload
