"""
Pytest fixtures for Tradeboard tests.
"""

import os
import pytest
from datetime import date, timedelta

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SECRET_KEY'] = 'test-secret-key'

from app import create_app
from models import db, User, Trade


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    application = create_app('testing')

    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    test_client = app.test_client()
    # Same-origin requests, as a browser on the app would send
    test_client.environ_base['HTTP_ORIGIN'] = 'http://localhost'
    return test_client


@pytest.fixture(scope='function')
def pm(app):
    """The app's portfolio manager."""
    return app.portfolio_manager


@pytest.fixture(scope='function')
def user(app):
    """A signed-up user."""
    account = User(sub='user-123', email='investor@example.com', name='Test Investor')
    db.session.add(account)
    db.session.commit()
    return account


@pytest.fixture(scope='function')
def other_user(app):
    account = User(sub='user-456', email='other@example.com', name='Other Investor')
    db.session.add(account)
    db.session.commit()
    return account


@pytest.fixture(scope='function')
def authenticated_client(client, user):
    """Create an authenticated test client."""
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True
    return client


@pytest.fixture(scope='function')
def sample_trades(app, user):
    """Three open trades and one closed trade for ``user``."""
    today = date.today()
    trades = [
        Trade(
            id='trade-apple',
            user_id=user.id,
            isin='US0378331005',
            ticker='AAPL',
            name='Apple Inc.',
            buy_price=100.0,
            quantity=10,
            invested_eur=1000.0,
            buy_date=today - timedelta(days=3),
            current_price=120.0,
            currency='EUR',
        ),
        Trade(
            id='trade-sap',
            user_id=user.id,
            isin='DE0007164600',
            ticker='SAP.DE',
            name='SAP SE',
            buy_price=200.0,
            quantity=5,
            invested_eur=1000.0,
            buy_date=today - timedelta(days=400),
            current_price=180.0,
            currency='EUR',
        ),
        Trade(
            id='trade-turbo',
            user_id=user.id,
            isin='DE000HG0ABC1',
            name='Turbo Long DAX',
            buy_price=2.0,
            quantity=100,
            invested_eur=200.0,
            buy_date=today - timedelta(days=10),
            current_price=3.0,
            currency='EUR',
            is_derivative=True,
            leverage=5,
            product_type='Knock-Out',
            underlying='DAX',
        ),
        Trade(
            id='trade-closed',
            user_id=user.id,
            isin='US5949181045',
            ticker='MSFT',
            name='Microsoft Corp.',
            buy_price=300.0,
            quantity=2,
            invested_eur=600.0,
            buy_date=today - timedelta(days=60),
            currency='EUR',
            is_closed=True,
            sell_price=350.0,
            sell_total=700.0,
            realized_pnl=100.0,
        ),
    ]
    db.session.add_all(trades)
    db.session.commit()
    return trades
