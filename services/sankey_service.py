# services/sankey_service.py
"""
Per-user budget Sankey configuration and diagram data.

Flow: incomes -> total income -> expense/savings categories -> sub-items,
plus an unallocated node for any surplus.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from constants import MAX_SANKEY_ITEMS, SANKEY_REST_THRESHOLD
from errors import ValidationError
from models import SankeyConfig, db, utcnow
from services.calculations import round_to_2

logger = logging.getLogger(__name__)

INCOME_COLOR = '#22c55e'
TOTAL_COLOR = '#3b82f6'
REST_COLOR = '#64748b'
CATEGORY_COLORS = [
    '#a855f7', '#f59e0b', '#ef4444', '#06b6d4', '#ec4899',
    '#14b8a6', '#f97316', '#8b5cf6', '#6366f1', '#84cc16',
]
SUB_COLORS = [
    '#c084fc', '#fbbf24', '#f87171', '#22d3ee', '#f472b6',
    '#2dd4bf', '#fb923c', '#a78bfa', '#818cf8', '#a3e635',
]
SAVINGS_CATEGORY_COLORS = ['#34d399', '#059669', '#10b981', '#047857', '#6ee7b7']
SAVINGS_SUB_COLORS = ['#6ee7b7', '#34d399', '#a7f3d0', '#10b981', '#2dd4bf']

TOTAL_INCOME_LABEL = 'Total income'
UNALLOCATED_LABEL = 'Unallocated'


def _new_id() -> str:
    return str(uuid.uuid4())


def _item(name: str, amount: float) -> Dict:
    return {'id': _new_id(), 'name': name, 'amount': amount}


def _category(name: str, amount: float, sub_items: List[Dict] = None) -> Dict:
    return {'id': _new_id(), 'name': name, 'amount': amount, 'subItems': sub_items or []}


def default_config() -> Dict:
    """Starter template shown before a user saves their own breakdown."""
    return {
        'id': _new_id(),
        'title': 'My budget',
        'incomes': [
            _item('Salary', 2500),
            _item('Side income', 300),
        ],
        'expenses': [
            _category('Housing', 950, [_item('Rent', 800), _item('Utilities', 150)]),
            _category('Living', 500, [_item('Groceries', 350), _item('Household', 150)]),
            _category('Transport', 200, [_item('Public transport / car', 150), _item('Fuel', 50)]),
            _category('Insurance', 250),
            _category('Leisure', 200),
        ],
        'savings': [
            _category('Investing', 500, [_item('ETF savings plan', 400), _item('Single stocks', 100)]),
            _category('Reserves', 200, [_item('Savings account', 150), _item('Emergency fund', 50)]),
        ],
        'updatedAt': datetime.now(timezone.utc).isoformat(),
    }


def _amount(value) -> float:
    if isinstance(value, bool):
        raise ValidationError("amount must be a number")
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number")


def _clean_items(items, label: str, with_subitems: bool) -> List[Dict]:
    if not isinstance(items, list):
        raise ValidationError(f"{label} must be a list", details={'field': label})
    if len(items) > MAX_SANKEY_ITEMS:
        raise ValidationError(f"{label} has more than {MAX_SANKEY_ITEMS} entries", details={'field': label})

    cleaned = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError(f"{label} entries must be objects", details={'field': label})
        entry = {
            'id': str(item.get('id') or _new_id()),
            'name': str(item.get('name') or '').strip(),
            'amount': _amount(item.get('amount')),
        }
        if with_subitems:
            entry['subItems'] = _clean_items(item.get('subItems') or [], f"{label}.subItems", False)
        cleaned.append(entry)
    return cleaned


class SankeyService:
    """Stores one Sankey configuration per user."""

    def get_config(self, user_id: int) -> Optional[Dict]:
        row = SankeyConfig.query.filter_by(user_id=user_id).first()
        return row.config if row else None

    def save_config(self, user_id: int, payload: Dict) -> Dict:
        if not isinstance(payload, dict) or 'incomes' not in payload or 'expenses' not in payload:
            raise ValidationError("incomes and expenses are required")

        config = {
            'id': str(payload.get('id') or _new_id()),
            'title': str(payload.get('title') or 'My budget')[:200],
            'incomes': _clean_items(payload['incomes'], 'incomes', False),
            'expenses': _clean_items(payload['expenses'], 'expenses', True),
            'savings': _clean_items(payload.get('savings') or [], 'savings', True),
            'updatedAt': datetime.now(timezone.utc).isoformat(),
        }

        row = SankeyConfig.query.filter_by(user_id=user_id).first()
        if row:
            row.config = config
            row.updated_at = utcnow()
        else:
            row = SankeyConfig(user_id=user_id, config=config)
            db.session.add(row)
        db.session.commit()
        logger.info(f"Sankey config saved for user {user_id}")
        return config


def _add_branch(nodes, links, source_idx, categories, colors, sub_colors):
    """Link source -> each positive category -> its sub-items and remainder."""
    for i, category in enumerate(categories):
        if category['amount'] <= 0:
            continue
        cat_idx = len(nodes)
        nodes.append({'name': category['name'], 'color': colors[i % len(colors)]})
        links.append({'source': source_idx, 'target': cat_idx, 'value': category['amount']})

        sub_items = category.get('subItems') or []
        if not sub_items:
            continue
        sub_total = sum(sub['amount'] for sub in sub_items if sub['amount'] > 0)
        for j, sub in enumerate(sub_items):
            if sub['amount'] <= 0:
                continue
            sub_idx = len(nodes)
            nodes.append({'name': sub['name'], 'color': sub_colors[(i * 3 + j) % len(sub_colors)]})
            links.append({'source': cat_idx, 'target': sub_idx, 'value': sub['amount']})

        rest = category['amount'] - sub_total
        if rest > SANKEY_REST_THRESHOLD:
            rest_idx = len(nodes)
            nodes.append({'name': f"{category['name']} (Other)", 'color': REST_COLOR})
            links.append({'source': cat_idx, 'target': rest_idx, 'value': round_to_2(rest)})


def build_sankey_data(config: Dict) -> Dict[str, List[Dict]]:
    """Nodes and index-based links for a Sankey chart; empty without positive income."""
    nodes: List[Dict] = []
    links: List[Dict] = []

    incomes = [i for i in config.get('incomes') or [] if i['amount'] > 0]
    if not incomes:
        return {'nodes': [], 'links': []}

    for income in incomes:
        nodes.append({'name': income['name'], 'color': INCOME_COLOR})

    total_idx = len(nodes)
    nodes.append({'name': TOTAL_INCOME_LABEL, 'color': TOTAL_COLOR})
    for idx, income in enumerate(incomes):
        links.append({'source': idx, 'target': total_idx, 'value': income['amount']})

    expenses = config.get('expenses') or []
    savings = config.get('savings') or []
    _add_branch(nodes, links, total_idx, expenses, CATEGORY_COLORS, SUB_COLORS)
    _add_branch(nodes, links, total_idx, savings, SAVINGS_CATEGORY_COLORS, SAVINGS_SUB_COLORS)

    total_income = sum(i['amount'] for i in incomes)
    allocated = sum(c['amount'] for c in expenses + savings if c['amount'] > 0)
    surplus = total_income - allocated
    if surplus > SANKEY_REST_THRESHOLD:
        surplus_idx = len(nodes)
        nodes.append({'name': UNALLOCATED_LABEL, 'color': REST_COLOR})
        links.append({'source': total_idx, 'target': surplus_idx, 'value': round_to_2(surplus)})

    return {'nodes': nodes, 'links': links}
