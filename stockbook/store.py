"""
Ledger store: the only module that talks to the database.

A ``LedgerStore`` wraps one SQLAlchemy session and is built per request by
the HTTP layer (or per test). Every public write method commits its own unit
of work, so no transaction spans two write calls; the Batch Ledger has to
compensate by hand when a later step fails. The bulk inserts write all of
their rows in one commit.

All reads and writes take the owner id and filter on it.
"""

from dataclasses import dataclass, field

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import ConcurrentModification, Conflict, PersistenceError
from .logging_config import get_logger
from .models import Product, Sale, StockBatch

log = get_logger('store')


@dataclass
class Page:
    """One page of rows plus the total row count for the filter."""

    rows: list = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def has_more(self):
        return (self.page - 1) * self.limit + self.limit < self.total

    def meta(self):
        return {'page': self.page, 'limit': self.limit, 'total': self.total, 'has_more': self.has_more}


def _paginate(query, page, limit):
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return Page(rows=rows, total=total, page=page, limit=limit)


def _within(query, column, from_date=None, to_date=None):
    # Inclusive bounds on both ends
    if from_date is not None:
        query = query.filter(column >= from_date)
    if to_date is not None:
        query = query.filter(column <= to_date)
    return query


class LedgerStore:
    """Owner-scoped persistence operations for products, batches and sales."""

    def __init__(self, session):
        self.session = session

    # ---- unit of work ----

    def _commit(self, conflict_message=None):
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if conflict_message:
                raise Conflict(conflict_message) from exc
            log.error('integrity error on commit: %s', exc.orig)
            raise PersistenceError(f'Integrity error: {exc.orig}') from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error('store commit failed: %s', exc)
            raise PersistenceError(str(exc)) from exc

    def _read(self, fn):
        try:
            return fn()
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error('store read failed: %s', exc)
            raise PersistenceError(str(exc)) from exc

    # ---- products ----

    def get_product(self, owner_id, product_id):
        return self._read(lambda: self.session.query(Product)
                          .filter_by(id=product_id, owner_id=owner_id).first())

    def products_by_sku(self, owner_id, skus):
        if not skus:
            return []
        return self._read(lambda: self.session.query(Product)
                          .filter(Product.owner_id == owner_id, Product.sku.in_(list(skus))).all())

    def insert_product(self, product):
        self.session.add(product)
        self._commit(conflict_message=f'SKU already exists for this user: {product.sku}')
        return product

    def insert_products(self, products):
        self.session.add_all(products)
        self._commit(conflict_message='Some SKUs already exist. Products must have unique SKUs.')
        return products

    def save_product(self, product):
        self._commit(conflict_message=f'SKU already exists for this user: {product.sku}')
        return product

    def delete_product(self, owner_id, product_id):
        """Delete a product and, before it, its sales and then its batches."""
        try:
            self.session.query(Sale).filter_by(owner_id=owner_id, product_id=product_id) \
                .delete(synchronize_session=False)
            self.session.query(StockBatch).filter_by(owner_id=owner_id, product_id=product_id) \
                .delete(synchronize_session=False)
            deleted = self.session.query(Product).filter_by(owner_id=owner_id, id=product_id) \
                .delete(synchronize_session=False)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(str(exc)) from exc
        self._commit()
        self.session.expire_all()
        return deleted

    def list_products(self, owner_id, page, limit, search=None, category=None):
        def run():
            query = self.session.query(Product).filter(Product.owner_id == owner_id)
            if search:
                query = query.filter(or_(
                    Product.name.icontains(search, autoescape=True),
                    Product.sku.icontains(search, autoescape=True),
                    Product.category.icontains(search, autoescape=True),
                ))
            if category:
                query = query.filter(Product.category == category)
            query = query.order_by(Product.created_at.desc(), Product.id.desc())
            return _paginate(query, page, limit)
        return self._read(run)

    def products_created(self, owner_id, from_date=None, to_date=None):
        return self._read(lambda: _within(
            self.session.query(Product).filter(Product.owner_id == owner_id),
            Product.created_at, from_date, to_date).all())

    # ---- stock batches ----

    def get_batch(self, owner_id, batch_id):
        return self._read(lambda: self.session.query(StockBatch)
                          .filter_by(id=batch_id, owner_id=owner_id).first())

    def insert_batch(self, batch):
        self.session.add(batch)
        self._commit()
        return batch

    def insert_batches(self, batches):
        self.session.add_all(batches)
        self._commit()
        return batches

    def decrement_batch(self, owner_id, batch_id, expected_remaining, new_remaining,
                        new_status, new_alert_status):
        """
        Conditional update of a batch's remaining boxes.

        Only applies when the row still holds ``expected_remaining``; a miss
        means another writer got there first and raises ConcurrentModification.
        """
        stmt = (
            update(StockBatch)
            .where(StockBatch.id == batch_id,
                   StockBatch.owner_id == owner_id,
                   StockBatch.boxes_remaining == expected_remaining)
            .values(boxes_remaining=new_remaining, status=new_status, alert_status=new_alert_status)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as exc:
            self.session.rollback()
            log.error('batch %s decrement failed: %s', batch_id, exc)
            raise PersistenceError(f'Failed to update batch stock: {exc}') from exc
        if result.rowcount == 0:
            self.session.rollback()
            raise ConcurrentModification(batch_id, expected_remaining)
        self._commit()
        self.session.expire_all()

    def list_batches(self, owner_id, page, limit, product_id=None, status=None,
                     from_date=None, to_date=None):
        def run():
            query = self.session.query(StockBatch).filter(StockBatch.owner_id == owner_id)
            if product_id is not None:
                query = query.filter(StockBatch.product_id == product_id)
            if status:
                query = query.filter(StockBatch.status == status)
            query = _within(query, StockBatch.created_at, from_date, to_date)
            query = query.order_by(StockBatch.created_at.desc(), StockBatch.id.desc())
            return _paginate(query, page, limit)
        return self._read(run)

    def active_batches(self, owner_id, from_date=None, to_date=None, in_stock_only=False):
        def run():
            query = self.session.query(StockBatch).filter(
                StockBatch.owner_id == owner_id, StockBatch.status == 'active')
            if in_stock_only:
                query = query.filter(StockBatch.boxes_remaining > 0)
            return _within(query, StockBatch.created_at, from_date, to_date) \
                .order_by(StockBatch.created_at.asc(), StockBatch.id.asc()).all()
        return self._read(run)

    # ---- sales ----

    def get_sale(self, owner_id, sale_id):
        return self._read(lambda: self.session.query(Sale)
                          .filter_by(id=sale_id, owner_id=owner_id).first())

    def insert_sale(self, sale):
        self.session.add(sale)
        self._commit()
        return sale

    def delete_sale(self, owner_id, sale_id):
        try:
            deleted = self.session.query(Sale).filter_by(id=sale_id, owner_id=owner_id) \
                .delete(synchronize_session=False)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f'Failed to delete sale {sale_id}: {exc}') from exc
        self._commit()
        self.session.expire_all()
        return deleted

    def list_sales(self, owner_id, page, limit, product_id=None, batch_id=None,
                   from_date=None, to_date=None):
        def run():
            query = self.session.query(Sale).filter(Sale.owner_id == owner_id)
            if product_id is not None:
                query = query.filter(Sale.product_id == product_id)
            if batch_id is not None:
                query = query.filter(Sale.batch_id == batch_id)
            query = _within(query, Sale.created_at, from_date, to_date)
            query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
            return _paginate(query, page, limit)
        return self._read(run)

    def sales_between(self, owner_id, from_date=None, to_date=None, exclusive_end=False):
        """All sales in a window, oldest first, with batch and product loaded."""
        def run():
            query = self.session.query(Sale).filter(Sale.owner_id == owner_id)
            if exclusive_end:
                if from_date is not None:
                    query = query.filter(Sale.created_at >= from_date)
                if to_date is not None:
                    query = query.filter(Sale.created_at < to_date)
            else:
                query = _within(query, Sale.created_at, from_date, to_date)
            return query.order_by(Sale.created_at.asc(), Sale.id.asc()).all()
        return self._read(run)
