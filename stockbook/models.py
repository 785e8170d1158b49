# Database models for the stockbook application.
# Every business row carries an owner_id; the store filters on it for every query.

from datetime import datetime, timezone
from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash

# Bound to the Flask app in create_app()
db = SQLAlchemy()

UNIT_TYPES = ('weight', 'count')
WEIGHT_UNITS = ('kg', 'g', 'lb', 'oz', 'liter')
COUNT_UNITS = ('box', 'packet', 'piece', 'bottle', 'can', 'carton', 'dozen', 'bag')

BATCH_STATUSES = ('active', 'depleted')

# NUMERIC column shapes; validation rejects values these columns would round
NUMERIC_PRECISION = 12
MONEY_SCALE = 2
QUANTITY_SCALE = 3


def utcnow():
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _serialize(value):
    # Money and quantities leave the application as strings, never floats
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SerializerMixin:
    """Single conversion point from a typed row to a JSON-ready dict."""

    def to_dict(self):
        return {c.name: _serialize(getattr(self, c.name)) for c in self.__table__.columns}


class User(db.Model):
    """
    User model for authentication and session management.
    The user id is the owner id stamped on every product, batch and sale.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)  # Owner id for every business row
    username = db.Column(db.String(80), unique=True, nullable=False)  # Login name (must be unique)
    password_hash = db.Column(db.String(256), nullable=False)  # Werkzeug hash, never the raw password

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {'id': self.id, 'username': self.username}


class Product(SerializerMixin, db.Model):
    """
    Catalog entry. SKU is unique per owner and stored upper-cased.
    """
    __tablename__ = 'products'
    __table_args__ = (db.UniqueConstraint('owner_id', 'sku', name='uq_products_owner_sku'),)

    id = db.Column(db.Integer, primary_key=True)  # Unique product identifier
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)  # Upper-cased stock keeping unit
    name = db.Column(db.String(120), nullable=False)  # Product name
    category = db.Column(db.String(80), nullable=True)  # Free-text category, matched exactly in filters
    description = db.Column(db.String(500), nullable=True)
    unit_type = db.Column(db.String(10), nullable=False)  # weight | count
    base_unit = db.Column(db.String(20), nullable=False)  # kg, box, piece, ...
    default_supplier = db.Column(db.String(120), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)  # Inactive products stay listed
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)


class StockBatch(SerializerMixin, db.Model):
    """
    A purchased lot of a product. boxes_remaining only ever goes down,
    through sale application; replenishment is a new batch.
    """
    __tablename__ = 'stock_batches'
    __table_args__ = (
        db.CheckConstraint('boxes_remaining >= 0', name='ck_batches_remaining_nonneg'),
        db.CheckConstraint('boxes_remaining <= boxes_purchased', name='ck_batches_remaining_le_purchased'),
        db.CheckConstraint('critical_level <= reorder_level', name='ck_batches_threshold_order'),
    )

    id = db.Column(db.Integer, primary_key=True)  # Unique batch identifier
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=True)  # Supplier lot number, optional
    boxes_purchased = db.Column(db.Integer, nullable=False)  # Original purchased boxes
    boxes_remaining = db.Column(db.Integer, nullable=False)  # Decremented by each sale
    quantity_per_box = db.Column(db.Numeric(NUMERIC_PRECISION, QUANTITY_SCALE, asdecimal=True),
                                 nullable=False)  # Units of unit_per_box in one box
    unit_per_box = db.Column(db.String(20), nullable=False)
    cost_per_box = db.Column(db.Numeric(NUMERIC_PRECISION, MONEY_SCALE, asdecimal=True),
                             nullable=False)  # Purchase cost, basis for profit
    supplier_name = db.Column(db.String(120), nullable=True)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)  # warning at or below
    critical_level = db.Column(db.Integer, nullable=False, default=0)  # critical at or below
    alert_status = db.Column(db.String(10), nullable=False, default='healthy')  # Derived, never set directly
    status = db.Column(db.String(10), nullable=False, default='active', index=True)  # active | depleted
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    product = db.relationship('Product', lazy='joined')


class Sale(SerializerMixin, db.Model):
    """
    One sale against one batch. Revenue and cost are derived on read;
    cost comes from the batch's cost_per_box.
    """
    __tablename__ = 'sales'

    id = db.Column(db.Integer, primary_key=True)  # Unique sale identifier
    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey('stock_batches.id'), nullable=False, index=True)
    boxes_sold = db.Column(db.Integer, nullable=False)  # Boxes taken from the batch
    selling_price_per_box = db.Column(db.Numeric(NUMERIC_PRECISION, MONEY_SCALE, asdecimal=True),
                                      nullable=False)  # Price charged per box
    customer_name = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    product = db.relationship('Product', lazy='joined')
    batch = db.relationship('StockBatch', lazy='joined')

    @property
    def revenue(self):
        return self.boxes_sold * self.selling_price_per_box
