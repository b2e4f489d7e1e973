# routes/api.py

import hmac
import logging
import re
from datetime import datetime, timezone

from flask import Blueprint, Response, current_app, json, jsonify, request
from flask_login import current_user, login_required

from constants import (
    AUTH_API_RATE_LIMIT,
    IDENTIFIER_PATTERN,
    MAX_HISTORY_ROWS,
    MAX_IDENTIFIER_LENGTH,
    MAX_IDENTIFIERS_PER_REQUEST,
    PROVIDER_PRIORITY,
    QUOTES_RATE_LIMIT,
    SORT_FIELDS,
    TIME_RANGES,
    TRADE_WRITE_RATE_LIMIT,
)
from errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
    api_error_handler,
)
from extensions import limiter
from providers import FinnhubError, FinnhubRateLimitError
from security import verify_origin
from services import ExchangeRateUnavailable
from services.calculations import parse_date
from services.sankey_service import build_sankey_data, default_config

logger = logging.getLogger(__name__)
api_bp = Blueprint('api', __name__)

IDENTIFIER_RE = re.compile(IDENTIFIER_PATTERN)

# Called by external cron with a bearer token, never from a browser
ORIGIN_CHECK_EXEMPT = {'api.cron_price_snapshots'}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _bool_arg(name: str) -> bool:
    return request.args.get(name, 'false').lower() in ('1', 'true', 'yes')


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be JSON")
    return data


def _datetime_arg(name: str):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00')).replace(tzinfo=None)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO timestamp", details={'field': name})


def parse_identifiers(raw: str):
    """
    Split ``A,B:yahoo`` into identifiers and a preferred-provider map.

    Raises:
        ValidationError: too many, too long or malformed identifiers
    """
    items = [part.strip().upper() for part in (raw or '').split(',') if part.strip()]
    if len(items) > MAX_IDENTIFIERS_PER_REQUEST:
        raise ValidationError(
            f"Too many identifiers ({len(items)}), maximum is {MAX_IDENTIFIERS_PER_REQUEST}"
        )

    identifiers = []
    preferred = {}
    for item in items:
        identifier, _, provider = item.rpartition(':')
        if identifier and provider.lower() in PROVIDER_PRIORITY:
            preferred[identifier] = provider.lower()
        else:
            identifier = item
        if len(identifier) > MAX_IDENTIFIER_LENGTH or not IDENTIFIER_RE.match(identifier):
            raise ValidationError(f"Invalid identifier: {identifier}")
        if identifier not in identifiers:
            identifiers.append(identifier)
    return identifiers, preferred


@api_bp.before_request
def check_origin():
    if not current_app.config.get('CSRF_ORIGIN_CHECK', True):
        return None
    if request.endpoint in ORIGIN_CHECK_EXEMPT:
        return None
    if not verify_origin():
        return jsonify(ForbiddenError("Invalid request origin").to_dict()), 403
    return None


# ========================================
# PUBLIC
# ========================================

@api_bp.route('/health')
def health_check():
    return jsonify({'status': 'ok', 'timestamp': _now_iso()})


@api_bp.route('/exchange-rate')
@api_error_handler
def get_exchange_rate():
    pm = current_app.portfolio_manager
    try:
        rates = pm.exchange_rates.get_live_rates()
    except ExchangeRateUnavailable as e:
        raise ServiceUnavailableError(str(e))
    return jsonify(rates)


@api_bp.route('/cron/price-snapshots', methods=['POST'])
@api_error_handler
def cron_price_snapshots():
    secret = current_app.config.get('CRON_SECRET')
    if not secret:
        raise ServiceUnavailableError("CRON_SECRET is not configured")
    header = request.headers.get('Authorization', '')
    if not hmac.compare_digest(header, f"Bearer {secret}"):
        raise AuthenticationError("Invalid cron credentials")

    result = current_app.portfolio_manager.take_price_snapshots()
    return jsonify(result), 200 if result['success'] else 207


# ========================================
# USER & QUOTES
# ========================================

@api_bp.route('/user')
@login_required
@api_error_handler
def get_user():
    return jsonify({'user': current_user.to_dict()})


@api_bp.route('/quotes')
@login_required
@limiter.limit(QUOTES_RATE_LIMIT)
@api_error_handler
def get_quotes():
    identifiers, preferred = parse_identifiers(request.args.get('isins', ''))
    pm = current_app.portfolio_manager
    result = pm.get_quotes(identifiers, force=_bool_arg('force'), preferred=preferred)
    result['timestamp'] = _now_iso()
    return jsonify(result)


@api_bp.route('/stocks/quote')
@login_required
@limiter.limit(QUOTES_RATE_LIMIT)
@api_error_handler
def get_stock_quote():
    identifier = (request.args.get('symbol') or request.args.get('isin') or '').strip()
    if not identifier:
        raise ValidationError("symbol or isin is required")

    finnhub = current_app.portfolio_manager.finnhub
    if finnhub is None:
        raise ServiceUnavailableError("Finnhub API key is not configured")

    try:
        return jsonify(finnhub.get_quote(identifier))
    except FinnhubRateLimitError as e:
        response = jsonify({'error': str(e), 'code': 'RATE_LIMIT_EXCEEDED'})
        if e.retry_after:
            response.headers['Retry-After'] = str(e.retry_after)
        return response, 429
    except FinnhubError as e:
        status = e.status_code if e.status_code and 400 <= e.status_code < 600 else 502
        return jsonify({'error': str(e), 'code': 'PROVIDER_ERROR'}), status


@api_bp.route('/stocks/search')
@login_required
@limiter.limit(QUOTES_RATE_LIMIT)
@api_error_handler
def search_stocks():
    query = (request.args.get('q') or '').strip()
    if len(query) < 1:
        raise ValidationError("q is required")
    results = current_app.portfolio_manager.quote_service.search(query[:50])
    return jsonify({'results': results, 'count': len(results)})


# ========================================
# TRADES
# ========================================

@api_bp.route('/trades', methods=['GET'])
@login_required
@limiter.limit(AUTH_API_RATE_LIMIT)
@api_error_handler
def list_trades():
    trades = current_app.portfolio_manager.get_trades_with_pnl(current_user.id)
    return jsonify({'trades': trades, 'count': len(trades)})


@api_bp.route('/trades', methods=['POST'])
@login_required
@limiter.limit(TRADE_WRITE_RATE_LIMIT)
@api_error_handler
def create_trade():
    trade = current_app.portfolio_manager.trades.create_trade(current_user.id, _json_body())
    return jsonify({'success': True, 'trade': trade.to_dict()}), 201


@api_bp.route('/trades/<trade_id>', methods=['PUT'])
@login_required
@limiter.limit(TRADE_WRITE_RATE_LIMIT)
@api_error_handler
def update_trade(trade_id):
    trade = current_app.portfolio_manager.trades.update_trade(current_user.id, trade_id, _json_body())
    return jsonify({'success': True, 'trade': trade.to_dict()})


@api_bp.route('/trades/<trade_id>', methods=['DELETE'])
@login_required
@api_error_handler
def delete_trade(trade_id):
    current_app.portfolio_manager.trades.delete_trade(current_user.id, trade_id)
    return jsonify({'success': True})


@api_bp.route('/trades/<trade_id>/close', methods=['POST'])
@login_required
@limiter.limit(TRADE_WRITE_RATE_LIMIT)
@api_error_handler
def close_trade(trade_id):
    data = _json_body()
    result = current_app.portfolio_manager.trades.close_trade(
        current_user.id,
        trade_id,
        sell_quantity=data.get('sellQuantity'),
        sell_price=data.get('sellPrice'),
        sell_total=data.get('sellTotal'),
        closed_at=data.get('closedAt'),
    )
    closed = result['closedTrade']
    return jsonify({
        'success': True,
        'trade': result['trade'].to_dict(),
        'closedTrade': closed.to_dict() if closed else None,
    })


@api_bp.route('/trades/export')
@login_required
@api_error_handler
def export_trades():
    payload = current_app.portfolio_manager.trades.export_trades(current_user.id)
    filename = f"trades-{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.json"
    return Response(
        json.dumps(payload, indent=2),
        mimetype='application/json',
        headers={'Content-Disposition': f'attachment; filename={filename}'},
    )


@api_bp.route('/trades/import', methods=['POST'])
@login_required
@limiter.limit(TRADE_WRITE_RATE_LIMIT)
@api_error_handler
def import_trades():
    result = current_app.portfolio_manager.trades.import_trades(current_user.id, _json_body())
    return jsonify({'success': True, **result})


# ========================================
# POSITIONS & SUMMARY
# ========================================

@api_bp.route('/positions')
@login_required
@limiter.limit(QUOTES_RATE_LIMIT)
@api_error_handler
def get_positions():
    positions = current_app.portfolio_manager.get_positions(current_user.id, refresh=_bool_arg('refresh'))
    return jsonify({'positions': positions, 'count': len(positions)})


@api_bp.route('/summary')
@login_required
@limiter.limit(AUTH_API_RATE_LIMIT)
@api_error_handler
def get_summary():
    time_range = request.args.get('timeRange', 'all')
    if time_range not in TIME_RANGES:
        raise ValidationError(f"timeRange must be one of {', '.join(TIME_RANGES)}")
    sort_by = request.args.get('sortBy')
    if sort_by and sort_by not in SORT_FIELDS:
        raise ValidationError(f"sortBy must be one of {', '.join(SORT_FIELDS)}")

    filters = {
        'timeRange': time_range,
        'customStart': parse_date(request.args.get('customStart')),
        'customEnd': parse_date(request.args.get('customEnd')),
        'searchQuery': request.args.get('searchQuery', ''),
        'onlyWinners': _bool_arg('onlyWinners'),
        'sortBy': sort_by,
    }
    result = current_app.portfolio_manager.get_summary(current_user.id, filters)
    result['timestamp'] = _now_iso()
    return jsonify(result)


# ========================================
# SANKEY
# ========================================

@api_bp.route('/sankey', methods=['GET'])
@login_required
@api_error_handler
def get_sankey_config():
    config = current_app.portfolio_manager.sankey.get_config(current_user.id)
    if config is None:
        raise NotFoundError("No Sankey configuration saved", details={'template': default_config()})
    return jsonify(config)


@api_bp.route('/sankey', methods=['PUT'])
@login_required
@limiter.limit(TRADE_WRITE_RATE_LIMIT)
@api_error_handler
def save_sankey_config():
    config = current_app.portfolio_manager.sankey.save_config(current_user.id, _json_body())
    return jsonify({'success': True, 'config': config})


@api_bp.route('/sankey/diagram')
@login_required
@api_error_handler
def get_sankey_diagram():
    config = current_app.portfolio_manager.sankey.get_config(current_user.id) or default_config()
    return jsonify(build_sankey_data(config))


# ========================================
# PRICE HISTORY
# ========================================

@api_bp.route('/prices/history')
@login_required
@api_error_handler
def get_price_history():
    identifier = (request.args.get('identifier') or '').strip().upper()
    if not identifier or not IDENTIFIER_RE.match(identifier):
        raise ValidationError("A valid identifier is required")
    limit = request.args.get('limit', MAX_HISTORY_ROWS, type=int)
    if limit <= 0:
        raise ValidationError("limit must be positive")

    history = current_app.portfolio_manager.snapshots.get_history(
        identifier, start=_datetime_arg('start'), end=_datetime_arg('end'), limit=limit
    )
    return jsonify(history)


@api_bp.route('/prices/stats')
@login_required
@api_error_handler
def get_price_stats():
    return jsonify(current_app.portfolio_manager.snapshots.get_stats())


@api_bp.route('/provider-status')
@login_required
@api_error_handler
def get_provider_status():
    pm = current_app.portfolio_manager
    status = pm.quote_service.status()
    if pm.finnhub is not None:
        status['finnhubQuota'] = pm.finnhub.get_quota_status()
    yahoo = pm.quote_service.get_provider('yahoo')
    status['marketOpen'] = yahoo.is_market_open() if yahoo else None
    return jsonify(status)
