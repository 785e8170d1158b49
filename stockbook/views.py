# JSON route handlers. Each request builds its own LedgerStore over the
# request-scoped session and hands it to the services it needs.

from flask import Response, current_app, jsonify, request

from .analytics import Analytics
from .auth import current_owner_id, login_required
from .catalog import CatalogManager
from .errors import ValidationError
from .ingest import BulkIngestor, product_template, sales_template, stock_template
from .ledger import BatchLedger
from .models import db
from .store import LedgerStore
from .validation import clean_str, page_params, parse_timestamp, to_int


def _store():
    return LedgerStore(db.session)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _page():
    return page_params(
        request.args.get('page'),
        request.args.get('limit'),
        default_limit=current_app.config['DEFAULT_PAGE_SIZE'],
        max_limit=current_app.config['MAX_PAGE_SIZE'],
    )


def _optional_int(name):
    value = request.args.get(name)
    if clean_str(value) is None:
        return None
    return to_int(value, name)


def _date_range():
    return (parse_timestamp(request.args.get('from_date'), 'from_date'),
            parse_timestamp(request.args.get('to_date'), 'to_date'))


def _days(default=30, strict=False):
    raw = request.args.get('days')
    if clean_str(raw) is None:
        return default
    try:
        days = to_int(raw, 'days', minimum=1)
    except ValidationError:
        if strict:
            raise ValidationError('Invalid days parameter', field='days')
        return default
    return days


def _listing(page):
    return jsonify({'data': [row.to_dict() for row in page.rows], 'meta': page.meta()})


def _uploaded_csv():
    """CSV text from a multipart 'file' field or a raw text/csv body."""
    upload = request.files.get('file')
    if upload is not None:
        if not (upload.filename or '').lower().endswith('.csv'):
            raise ValidationError('Only CSV files are supported', field='file')
        raw = upload.read()
    elif request.mimetype == 'text/csv':
        raw = request.get_data()
    else:
        raise ValidationError('No file provided', field='file')
    try:
        return raw.decode('utf-8-sig')
    except UnicodeDecodeError:
        raise ValidationError('CSV file must be UTF-8 encoded', field='file')


def _csv_download(text, filename):
    return Response(text, mimetype='text/csv',
                    headers={'Content-Disposition': f'attachment; filename={filename}'})


def register_routes(app):

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    # ==================== PRODUCT ROUTES ====================

    @app.route('/products', methods=['POST'])
    @login_required
    def create_product():
        product = CatalogManager(_store()).create(current_owner_id(), _json_body())
        return jsonify(product.to_dict()), 201

    @app.route('/products', methods=['GET'])
    @login_required
    def list_products():
        page, limit = _page()
        result = CatalogManager(_store()).list(
            current_owner_id(), page, limit,
            search=request.args.get('search'), category=request.args.get('category'))
        return _listing(result)

    @app.route('/products/bulk', methods=['POST'])
    @login_required
    def bulk_create_products():
        body = request.get_json(silent=True)
        items = body.get('products') if isinstance(body, dict) else body
        products = CatalogManager(_store()).bulk_create(current_owner_id(), items)
        return jsonify({
            'message': 'Products created successfully',
            'success_count': len(products),
            'products': [p.to_dict() for p in products],
        }), 201

    @app.route('/products/<int:product_id>', methods=['GET'])
    @login_required
    def get_product(product_id):
        return jsonify(CatalogManager(_store()).get(current_owner_id(), product_id).to_dict())

    @app.route('/products/<int:product_id>', methods=['PUT'])
    @login_required
    def update_product(product_id):
        product = CatalogManager(_store()).update(current_owner_id(), product_id, _json_body())
        return jsonify(product.to_dict())

    @app.route('/products/<int:product_id>', methods=['PATCH'])
    @login_required
    def toggle_product(product_id):
        body = _json_body()
        if 'is_active' not in body:
            raise ValidationError('is_active is required', field='is_active')
        product = CatalogManager(_store()).set_active(current_owner_id(), product_id, body['is_active'])
        return jsonify(product.to_dict())

    @app.route('/products/<int:product_id>', methods=['DELETE'])
    @login_required
    def delete_product(product_id):
        CatalogManager(_store()).delete(current_owner_id(), product_id)
        return jsonify({'success': True})

    @app.route('/products/analytics')
    @login_required
    def product_analytics():
        from_date, to_date = _date_range()
        return jsonify(_analytics().product_summary(current_owner_id(), from_date, to_date))

    @app.route('/products/template')
    @login_required
    def product_csv_template():
        return _csv_download(product_template(), 'products_template.csv')

    @app.route('/products/bulk-upload', methods=['POST'])
    @login_required
    def upload_products():
        store = _store()
        ingestor = BulkIngestor(CatalogManager(store), BatchLedger(store), store)
        products = ingestor.ingest_products(current_owner_id(), _uploaded_csv())
        return jsonify({
            'success': True,
            'inserted_count': len(products),
            'data': [p.to_dict() for p in products],
        }), 201

    # ==================== INVENTORY (STOCK BATCH) ROUTES ====================

    @app.route('/inventory', methods=['POST'])
    @login_required
    def create_batch():
        batch = BatchLedger(_store()).create_batch(current_owner_id(), _json_body())
        return jsonify(batch.to_dict()), 201

    @app.route('/inventory', methods=['GET'])
    @login_required
    def list_batches():
        page, limit = _page()
        from_date, to_date = _date_range()
        result = BatchLedger(_store()).list_batches(
            current_owner_id(), page, limit,
            product_id=_optional_int('product_id'),
            status=clean_str(request.args.get('status')) or 'active',
            from_date=from_date, to_date=to_date)
        return _listing(result)

    @app.route('/inventory/<int:batch_id>')
    @login_required
    def get_batch(batch_id):
        return jsonify(BatchLedger(_store()).get_batch(current_owner_id(), batch_id).to_dict())

    @app.route('/inventory/analytics')
    @login_required
    def inventory_analytics():
        from_date, to_date = _date_range()
        return jsonify(_analytics().inventory_summary(current_owner_id(), from_date, to_date))

    @app.route('/inventory/template')
    @login_required
    def stock_csv_template():
        return _csv_download(stock_template(), 'stock_batches_template.csv')

    @app.route('/inventory/bulk-upload', methods=['POST'])
    @login_required
    def upload_stock():
        store = _store()
        ingestor = BulkIngestor(CatalogManager(store), BatchLedger(store), store)
        batches = ingestor.ingest_stock(current_owner_id(), _uploaded_csv())
        return jsonify({
            'success': True,
            'inserted_count': len(batches),
            'message': f'Successfully inserted {len(batches)} stock batches',
            'data': [b.to_dict() for b in batches],
        }), 201

    # ==================== SALES ROUTES ====================

    @app.route('/sales', methods=['POST'])
    @login_required
    def create_sale():
        sale = BatchLedger(_store()).apply_sale(current_owner_id(), _json_body())
        return jsonify(sale.to_dict()), 201

    @app.route('/sales', methods=['GET'])
    @login_required
    def list_sales():
        page, limit = _page()
        from_date, to_date = _date_range()
        result = BatchLedger(_store()).list_sales(
            current_owner_id(), page, limit,
            product_id=_optional_int('product_id'),
            batch_id=_optional_int('batch_id'),
            from_date=from_date, to_date=to_date)
        return _listing(result)

    @app.route('/sales/<int:sale_id>')
    @login_required
    def get_sale(sale_id):
        return jsonify(BatchLedger(_store()).get_sale(current_owner_id(), sale_id).to_dict())

    @app.route('/sales/analytics')
    @login_required
    def sales_analytics():
        from_date, to_date = _date_range()
        return jsonify(_analytics().sales_summary(current_owner_id(), from_date, to_date))

    @app.route('/sales/template')
    @login_required
    def sales_csv_template():
        return _csv_download(sales_template(), 'sales_template.csv')

    @app.route('/sales/bulk-upload', methods=['POST'])
    @login_required
    def upload_sales():
        store = _store()
        ingestor = BulkIngestor(CatalogManager(store), BatchLedger(store), store)
        upload = ingestor.ingest_sales(current_owner_id(), _uploaded_csv())
        return jsonify(upload.to_dict()), upload.http_status

    # ==================== ANALYTICS ROUTES ====================

    @app.route('/analytics/profit')
    @login_required
    def profit_analytics():
        return jsonify(_analytics().profit(current_owner_id(), days=_days()))

    @app.route('/analytics/performers')
    @login_required
    def top_performers():
        limit = to_int(request.args.get('limit'), 'limit', minimum=1, default=10)
        return jsonify(_analytics().performers(current_owner_id(), days=_days(), limit=limit))

    @app.route('/analytics/stock-alerts')
    @login_required
    def stock_alerts():
        return jsonify(_analytics().stock_alerts(current_owner_id()))

    @app.route('/analytics/weekly-report')
    @login_required
    def weekly_report():
        return jsonify(_analytics().weekly_report(current_owner_id()))

    @app.route('/analytics/search')
    @login_required
    def search_performers():
        limit = to_int(request.args.get('limit'), 'limit', minimum=1, default=100)
        results = _analytics().search(
            current_owner_id(),
            query=clean_str(request.args.get('q')),
            category=clean_str(request.args.get('category')),
            sort_by=clean_str(request.args.get('sort_by')) or 'revenue',
            days=_days(strict=True),
            limit=limit)
        return jsonify(results)


def _analytics():
    return Analytics(_store(), now=current_app.config.get('CLOCK'),
                     currency=current_app.config['CURRENCY'])
