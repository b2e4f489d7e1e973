#!/usr/bin/env python3
"""
Seed script for a local demo account.

Usage:
    python scripts/seed_test_data.py [--sub demo-user]

This script will:
1. Create (or reuse) a demo user keyed by an OIDC subject
2. Add sample trades, one of them partially sold and one closed
3. Save the default budget Sankey configuration
"""

import argparse
import os
import sys
from datetime import date, timedelta

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from auth import upsert_user_from_claims
from services import SankeyService, TradeService
from services.sankey_service import default_config


SEED_TRADES = [
    {'isin': 'US0378331005', 'ticker': 'AAPL', 'name': 'Apple Inc.', 'buyPrice': 165.20,
     'quantity': 12, 'currency': 'USD', 'days_ago': 120},
    {'isin': 'DE0007164600', 'ticker': 'SAP.DE', 'name': 'SAP SE', 'buyPrice': 172.50,
     'quantity': 10, 'currency': 'EUR', 'days_ago': 90},
    {'isin': 'IE00B4L5Y983', 'ticker': 'EUNL.DE', 'name': 'iShares Core MSCI World', 'buyPrice': 84.10,
     'quantity': 40, 'currency': 'EUR', 'days_ago': 60},
    {'isin': '', 'ticker': 'BTC-EUR', 'name': 'Bitcoin', 'buyPrice': 52000,
     'quantity': 0.05, 'currency': 'EUR', 'days_ago': 30},
]


def seed(sub: str):
    trades = TradeService()
    user = upsert_user_from_claims({'sub': sub, 'email': f'{sub}@example.com', 'name': 'Demo User'})

    if trades.list_trades(user.id):
        print(f"User {user.id} already has trades - skipping trade seed")
    else:
        created = []
        for row in SEED_TRADES:
            data = {k: v for k, v in row.items() if k != 'days_ago'}
            data['buyDate'] = (date.today() - timedelta(days=row['days_ago'])).isoformat()
            created.append(trades.create_trade(user.id, data))
            print(f"  + {data['name']}: {data['quantity']} @ {data['buyPrice']} {data['currency']}")

        sap, etf = created[1], created[2]
        trades.close_trade(user.id, etf.id, sell_quantity=15, sell_price=91.30)
        print(f"  ~ sold 15 of {etf.name}")
        trades.close_trade(user.id, sap.id, sell_price=181.00)
        print(f"  - closed {sap.name}")

    sankey = SankeyService()
    if sankey.get_config(user.id) is None:
        sankey.save_config(user.id, default_config())
        print("  + default budget configuration")

    return user


def main():
    parser = argparse.ArgumentParser(description='Seed a demo user with sample data')
    parser.add_argument('--sub', default='demo-user', help='OIDC subject for the demo user')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        print("=" * 60)
        print("SEEDING DEMO DATA")
        print("=" * 60)
        user = seed(args.sub)
        print(f"\nDone. Demo user id={user.id} sub={user.sub}")


if __name__ == '__main__':
    main()
