"""
Catalog manager: product CRUD scoped to an owner.

SKUs are trimmed and upper-cased before they reach the store, so the
``(owner_id, sku)`` unique constraint makes uniqueness case-insensitive.
"""

from .errors import Conflict, InvalidUnitCombination, NotFound, ValidationError
from .logging_config import get_logger
from .models import COUNT_UNITS, UNIT_TYPES, WEIGHT_UNITS, Product
from .validation import clean_str, require_str, to_bool

log = get_logger('catalog')

MAX_BULK_PRODUCTS = 50

_UNITS_BY_TYPE = {'weight': WEIGHT_UNITS, 'count': COUNT_UNITS}
_OPTIONAL_FIELDS = ('category', 'description', 'default_supplier')


def normalize_product(data):
    """
    Validate a product payload and return the normalised field dict.

    Raises ValidationError for missing/blank required fields and
    InvalidUnitCombination when base_unit does not belong to unit_type.
    """
    sku = require_str(data, 'sku').upper()
    name = require_str(data, 'name')
    unit_type = (clean_str(data.get('unit_type')) or '').lower()
    if unit_type not in UNIT_TYPES:
        raise ValidationError("unit_type must be 'weight' or 'count'", field='unit_type')
    base_unit = require_str(data, 'base_unit').lower()
    if base_unit not in _UNITS_BY_TYPE[unit_type]:
        raise InvalidUnitCombination(unit_type, base_unit)

    fields = {'sku': sku, 'name': name, 'unit_type': unit_type, 'base_unit': base_unit}
    for key in _OPTIONAL_FIELDS:
        fields[key] = clean_str(data.get(key))
    return fields


class CatalogManager:
    def __init__(self, store):
        self.store = store

    def create(self, owner_id, data):
        fields = normalize_product(data)
        product = self.store.insert_product(Product(owner_id=owner_id, is_active=True, **fields))
        log.info('product %s created (sku=%s, owner=%s)', product.id, product.sku, owner_id)
        return product

    def get(self, owner_id, product_id):
        product = self.store.get_product(owner_id, product_id)
        if product is None:
            raise NotFound('Product', product_id)
        return product

    def update(self, owner_id, product_id, patch):
        """Apply a partial update; absent keys keep their current value."""
        product = self.get(owner_id, product_id)
        merged = {
            'sku': product.sku,
            'name': product.name,
            'unit_type': product.unit_type,
            'base_unit': product.base_unit,
            'category': product.category,
            'description': product.description,
            'default_supplier': product.default_supplier,
        }
        merged.update({k: v for k, v in patch.items() if k in merged})
        fields = normalize_product(merged)
        if 'is_active' in patch:
            fields['is_active'] = to_bool(patch['is_active'], 'is_active')
        for key, value in fields.items():
            setattr(product, key, value)
        self.store.save_product(product)
        log.info('product %s updated (owner=%s)', product_id, owner_id)
        return product

    def set_active(self, owner_id, product_id, is_active):
        product = self.get(owner_id, product_id)
        product.is_active = to_bool(is_active, 'is_active')
        self.store.save_product(product)
        log.info('product %s is_active=%s (owner=%s)', product_id, product.is_active, owner_id)
        return product

    def delete(self, owner_id, product_id):
        self.get(owner_id, product_id)
        self.store.delete_product(owner_id, product_id)
        log.info('product %s deleted with its batches and sales (owner=%s)', product_id, owner_id)

    def list(self, owner_id, page, limit, search=None, category=None):
        return self.store.list_products(owner_id, page, limit,
                                        search=clean_str(search), category=clean_str(category))

    def bulk_create(self, owner_id, items):
        """
        Create up to MAX_BULK_PRODUCTS products. Every row is validated before
        anything is written; one bad row rejects the whole request.
        """
        if not isinstance(items, list) or not items:
            raise ValidationError('products must be a non-empty list', field='products')
        if len(items) > MAX_BULK_PRODUCTS:
            raise ValidationError(f'Maximum {MAX_BULK_PRODUCTS} products per request', field='products')

        normalized = []
        seen = set()
        for index, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                raise ValidationError(f'Row {index}: product must be an object')
            try:
                fields = normalize_product(item)
            except ValidationError as exc:
                raise ValidationError(f'Row {index}: {exc.message}', field=exc.field) from exc
            if fields['sku'] in seen:
                raise Conflict(f'Duplicate SKU in request: {fields["sku"]}')
            seen.add(fields['sku'])
            normalized.append(fields)

        existing = self.store.products_by_sku(owner_id, seen)
        if existing:
            taken = ', '.join(sorted(p.sku for p in existing))
            raise Conflict(f'SKUs already exist for this user: {taken}')

        products = self.store.insert_products(
            [Product(owner_id=owner_id, is_active=True, **fields) for fields in normalized])
        log.info('bulk created %d products (owner=%s)', len(products), owner_id)
        return products
