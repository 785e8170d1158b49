"""
Analytics read-models.

The ``summarize_*``/``rank_*``/``compute_*``/``build_*`` functions are pure:
they take rows already fetched from the store and return plain dicts, so
running one twice over the same rows gives the same answer. ``Analytics``
does the fetching for one owner with an injected ``now``.

Money is summed as Decimal. Percentages are Decimal rounded half-up.
"""

from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP

from .errors import ValidationError
from .models import utcnow

ZERO = Decimal('0')
TWO_PLACES = Decimal('0.01')
ONE_PLACE = Decimal('0.1')

TREND_THRESHOLD = Decimal('5')
ALERT_WINDOW_DAYS = 30
DEFAULT_DAILY_SALES = Decimal('2')
STOCKOUT_SENTINEL_DAYS = Decimal('999')
CRITICAL_DAYS = Decimal('3')
WARNING_DAYS = Decimal('7')
LOW_STOCK_BOXES = 5

SORT_KEYS = ('revenue', 'profit', 'margin', 'volume')
_SEVERITY_ORDER = {'critical': 0, 'warning': 1, 'info': 2}


def _round(value, places=TWO_PLACES):
    return value.quantize(places, rounding=ROUND_HALF_UP)


def percent(part, whole, places=TWO_PLACES):
    """100 * part / whole, or 0 when whole is not positive."""
    if whole <= 0:
        return _round(ZERO, places)
    return _round(part * 100 / whole, places)


def sale_revenue(sale):
    return sale.selling_price_per_box * sale.boxes_sold


def sale_cost(sale):
    # Cost is read from the batch at aggregation time
    cost_per_box = sale.batch.cost_per_box if sale.batch is not None else ZERO
    return cost_per_box * sale.boxes_sold


def _product_key(sale):
    product = sale.product
    return sale.product_id, {
        'product_id': sale.product_id,
        'product_name': product.name if product else 'Unknown',
        'sku': product.sku if product else 'Unknown',
        'category': (product.category if product else None) or 'Uncategorized',
    }


def _group_by_product(sales):
    groups = OrderedDict()
    for sale in sales:
        key, info = _product_key(sale)
        group = groups.get(key)
        if group is None:
            group = dict(info, revenue=ZERO, cost=ZERO, boxes_sold=0, sales_count=0)
            groups[key] = group
        group['revenue'] += sale_revenue(sale)
        group['cost'] += sale_cost(sale)
        group['boxes_sold'] += sale.boxes_sold
        group['sales_count'] += 1
    for group in groups.values():
        group['profit'] = group['revenue'] - group['cost']
        group['profit_margin'] = percent(group['profit'], group['revenue'])
        group['avg_price_per_box'] = (
            _round(group['revenue'] / group['boxes_sold']) if group['boxes_sold'] else ZERO)
    return groups


def _sort_performers(rows, sort_by):
    keys = {
        'revenue': lambda r: r['revenue'],
        'profit': lambda r: r['profit'],
        'margin': lambda r: r['profit_margin'],
        'volume': lambda r: r['boxes_sold'],
    }
    return sorted(rows, key=keys[sort_by], reverse=True)


# ==================== PURE AGGREGATIONS ====================

def summarize_profit(sales):
    groups = _group_by_product(sales)
    total_revenue = sum((g['revenue'] for g in groups.values()), ZERO)
    total_cost = sum((g['cost'] for g in groups.values()), ZERO)
    total_profit = total_revenue - total_cost
    by_product = [
        {
            'product_id': g['product_id'],
            'product_name': g['product_name'],
            'sku': g['sku'],
            'revenue': g['revenue'],
            'cost': g['cost'],
            'profit': g['profit'],
            'profit_margin': g['profit_margin'],
            'boxes_sold': g['boxes_sold'],
        }
        for g in groups.values()
    ]
    by_product.sort(key=lambda r: r['profit'], reverse=True)
    return {
        'total_revenue': total_revenue,
        'total_cost': total_cost,
        'total_profit': total_profit,
        'profit_margin_percent': percent(total_profit, total_revenue),
        'product_count': len(groups),
        'average_profit_per_product': _round(total_profit / len(groups)) if groups else ZERO,
        'by_product': by_product,
    }


def classify_trend(current, previous):
    """Return (trend, trend_percent) comparing two revenue totals."""
    if previous <= 0:
        return 'flat', _round(ZERO, ONE_PLACE)
    change = percent(current - previous, previous, ONE_PLACE)
    if change > TREND_THRESHOLD:
        return 'up', change
    if change < -TREND_THRESHOLD:
        return 'down', change
    return 'flat', change


def rank_performers(current_sales, previous_sales, limit=10):
    groups = _group_by_product(current_sales)
    previous = {}
    for sale in previous_sales:
        previous[sale.product_id] = previous.get(sale.product_id, ZERO) + sale_revenue(sale)

    performers = []
    for key, group in groups.items():
        trend, trend_percent = classify_trend(group['revenue'], previous.get(key, ZERO))
        row = {k: v for k, v in group.items() if k != 'sales_count'}
        row.update(trend=trend, trend_percent=trend_percent)
        performers.append(row)

    return {
        'by_revenue': _sort_performers(performers, 'revenue')[:limit],
        'by_profit': _sort_performers(performers, 'profit')[:limit],
        'by_margin': _sort_performers(performers, 'margin')[:limit],
        'by_volume': _sort_performers(performers, 'volume')[:limit],
    }


def compute_stock_alerts(batches, recent_sales, window_days=ALERT_WINDOW_DAYS):
    """
    Days-until-stockout alerts for in-stock batches.

    Average daily sales per product come from ``recent_sales`` over
    ``window_days``; a product with no sales is assumed to sell 2 boxes/day.
    """
    sold = {}
    for sale in recent_sales:
        sold[sale.product_id] = sold.get(sale.product_id, 0) + sale.boxes_sold

    alerts = []
    for batch in batches:
        if batch.boxes_remaining <= 0:
            continue
        if batch.product_id in sold:
            avg_daily = Decimal(sold[batch.product_id]) / window_days
        else:
            avg_daily = DEFAULT_DAILY_SALES
        if avg_daily > 0:
            days_left = Decimal(batch.boxes_remaining) / avg_daily
        else:
            days_left = STOCKOUT_SENTINEL_DAYS

        if days_left <= CRITICAL_DAYS:
            severity = 'critical'
        elif days_left <= WARNING_DAYS:
            severity = 'warning'
        else:
            continue

        reorder = int((avg_daily * window_days).to_integral_value(rounding=ROUND_CEILING))
        days_text = _round(days_left, ONE_PLACE)
        if severity == 'critical':
            recommendation = (f'URGENT: Order {reorder} boxes immediately. '
                              f'Will stockout in {days_text} days.')
        else:
            recommendation = f'Order {reorder} boxes soon. Current stock will last {days_text} days.'

        product = batch.product
        alerts.append({
            'product_id': batch.product_id,
            'product_name': product.name if product else 'Unknown',
            'sku': product.sku if product else 'Unknown',
            'batch_id': batch.id,
            'boxes_remaining': batch.boxes_remaining,
            'avg_daily_sales': _round(avg_daily),
            'days_until_stockout': days_text,
            'severity': severity,
            'recommended_order': reorder,
            'supplier': batch.supplier_name or 'Unknown',
            'recommendation': recommendation,
        })

    alerts.sort(key=lambda a: (_SEVERITY_ORDER[a['severity']], a['days_until_stockout']))
    return {
        'total_alerts': len(alerts),
        'critical_count': sum(1 for a in alerts if a['severity'] == 'critical'),
        'warning_count': sum(1 for a in alerts if a['severity'] == 'warning'),
        'alerts': alerts,
    }


def write_narrative(report, currency='PKR'):
    """Plain-language summary of a weekly report dict."""
    parts = []
    change = report['revenue_change']
    revenue = f"{currency} {report['total_revenue']:,.2f}"
    if change > 0:
        parts.append(f'Strong week! Revenue grew by {change:.1f}% compared to last week, '
                     f'reaching {revenue}.')
    elif change < 0:
        parts.append(f'Revenue declined by {abs(change):.1f}% this week. '
                     f'Consider reviewing your pricing or marketing strategy.')
    else:
        parts.append(f'Revenue remained stable at {revenue} this week.')

    parts.append(f"Profit margin stands at {report['profit_margin']:.1f}%, "
                 f"with total profit of {currency} {report['total_profit']:,.2f}.")

    if report['top_products']:
        top = report['top_products'][0]
        parts.append(f'Your top performing product is "{top["name"]}" with '
                     f'{currency} {top["revenue"]:,.2f} in revenue.')
    if report['total_boxes_sold'] > 0:
        parts.append(f"You sold {report['total_boxes_sold']:,} boxes this week.")
    if report['low_stock_products']:
        names = ', '.join(report['low_stock_products'][:3])
        parts.append(f'Low stock alert: {names} are running low. Consider reordering soon.')
    return ' '.join(parts)


def build_weekly_report(current_sales, previous_sales, low_stock_batches, start, end, currency='PKR'):
    groups = _group_by_product(current_sales)
    total_revenue = sum((g['revenue'] for g in groups.values()), ZERO)
    total_cost = sum((g['cost'] for g in groups.values()), ZERO)
    total_profit = total_revenue - total_cost
    previous_revenue = sum((sale_revenue(s) for s in previous_sales), ZERO)

    top_products = sorted(
        ({'name': g['product_name'], 'revenue': g['revenue'], 'profit': g['profit']}
         for g in groups.values()),
        key=lambda p: p['revenue'], reverse=True)[:3]

    low_stock = []
    for batch in low_stock_batches:
        name = batch.product.name if batch.product else None
        if name and name not in low_stock:
            low_stock.append(name)

    report = {
        'period': f'{start.date().isoformat()} - {end.date().isoformat()}',
        'total_revenue': total_revenue,
        'total_profit': total_profit,
        'profit_margin': percent(total_profit, total_revenue),
        'total_boxes_sold': sum(g['boxes_sold'] for g in groups.values()),
        'previous_week_revenue': previous_revenue,
        'revenue_change': percent(total_revenue - previous_revenue, previous_revenue),
        'top_products': top_products,
        'low_stock_products': low_stock,
    }
    report['narrative'] = write_narrative(report, currency)
    return report


def summarize_inventory(batches):
    return {
        'total_value': sum((Decimal(b.boxes_remaining) * b.cost_per_box for b in batches), ZERO),
        'total_boxes': sum(b.boxes_remaining for b in batches),
        'total_batches': len(batches),
    }


def summarize_products(products):
    active = sum(1 for p in products if p.is_active)
    return {'total': len(products), 'active': active, 'inactive': len(products) - active}


def summarize_sales(sales, top=10):
    daily = OrderedDict()
    by_name = OrderedDict()
    by_category = OrderedDict()
    total_revenue = total_cost = ZERO
    total_boxes = 0

    def bump(bucket, key, revenue, cost, boxes):
        entry = bucket.setdefault(key, {'revenue': ZERO, 'cost': ZERO, 'boxes': 0, 'transactions': 0})
        entry['revenue'] += revenue
        entry['cost'] += cost
        entry['boxes'] += boxes
        entry['transactions'] += 1

    for sale in sales:
        revenue, cost = sale_revenue(sale), sale_cost(sale)
        total_revenue += revenue
        total_cost += cost
        total_boxes += sale.boxes_sold
        product = sale.product
        bump(daily, sale.created_at.date().isoformat(), revenue, cost, sale.boxes_sold)
        bump(by_name, product.name if product else 'Unknown', revenue, cost, sale.boxes_sold)
        bump(by_category, (product.category if product else None) or 'Uncategorized',
             revenue, cost, sale.boxes_sold)

    def finish(key_name, key, entry):
        return {
            key_name: key,
            'revenue': entry['revenue'],
            'cost': entry['cost'],
            'profit': entry['revenue'] - entry['cost'],
            'boxes': entry['boxes'],
            'transactions': entry['transactions'],
            'avg_price': _round(entry['revenue'] / entry['boxes']) if entry['boxes'] else ZERO,
        }

    def ranked(bucket):
        rows = [finish('name', k, v) for k, v in bucket.items()]
        return sorted(rows, key=lambda r: r['revenue'], reverse=True)[:top]

    total_profit = total_revenue - total_cost
    return {
        'summary': {
            'total_revenue': total_revenue,
            'total_cost': total_cost,
            'total_profit': total_profit,
            'profit_margin': percent(total_profit, total_revenue),
            'total_boxes': total_boxes,
            'avg_price': _round(total_revenue / total_boxes) if total_boxes else ZERO,
            'total_transactions': len(sales),
        },
        'daily_data': [finish('date', k, v) for k, v in daily.items()],
        'top_products': ranked(by_name),
        'top_categories': ranked(by_category),
    }


def search_performers(sales, query=None, category=None, sort_by='revenue', limit=100):
    if sort_by not in SORT_KEYS:
        raise ValidationError(f"sort_by must be one of {', '.join(SORT_KEYS)}", field='sort_by')
    rows = list(_group_by_product(sales).values())
    if query:
        needle = query.lower()
        rows = [r for r in rows
                if needle in r['product_name'].lower()
                or needle in r['sku'].lower()
                or needle in r['category'].lower()]
    if category:
        rows = [r for r in rows if r['category'] == category]
    return _sort_performers(rows, sort_by)[:limit]


# ==================== STORE-BACKED READ MODELS ====================

class Analytics:
    """Fetches an owner's rows from the store and runs the aggregations."""

    def __init__(self, store, now=None, currency='PKR'):
        self.store = store
        self.now = now or utcnow
        self.currency = currency

    def _window(self, days):
        end = self.now()
        return end - timedelta(days=days), end

    def profit(self, owner_id, days=30):
        start, end = self._window(days)
        return summarize_profit(self.store.sales_between(owner_id, start, end))

    def performers(self, owner_id, days=30, limit=10):
        start, end = self._window(days)
        current = self.store.sales_between(owner_id, start, end)
        previous = self.store.sales_between(owner_id, start - timedelta(days=days), start,
                                            exclusive_end=True)
        return rank_performers(current, previous, limit)

    def stock_alerts(self, owner_id):
        start, end = self._window(ALERT_WINDOW_DAYS)
        batches = self.store.active_batches(owner_id, in_stock_only=True)
        return compute_stock_alerts(batches, self.store.sales_between(owner_id, start, end))

    def weekly_report(self, owner_id):
        start, end = self._window(7)
        current = self.store.sales_between(owner_id, start, end)
        previous = self.store.sales_between(owner_id, start - timedelta(days=7), start,
                                            exclusive_end=True)
        low_stock = [b for b in self.store.active_batches(owner_id)
                     if b.boxes_remaining < LOW_STOCK_BOXES]
        return build_weekly_report(current, previous, low_stock, start, end, self.currency)

    def inventory_summary(self, owner_id, from_date=None, to_date=None):
        return summarize_inventory(self.store.active_batches(owner_id, from_date, to_date))

    def product_summary(self, owner_id, from_date=None, to_date=None):
        return summarize_products(self.store.products_created(owner_id, from_date, to_date))

    def sales_summary(self, owner_id, from_date=None, to_date=None):
        return summarize_sales(self.store.sales_between(owner_id, from_date, to_date))

    def search(self, owner_id, query=None, category=None, sort_by='revenue', days=30, limit=100):
        start, end = self._window(days)
        return search_performers(self.store.sales_between(owner_id, start, end),
                                 query=query, category=category, sort_by=sort_by, limit=limit)
