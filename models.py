# models.py
"""
Database models for trade tracking.
Defines tables: users, trades, partial_sales, sankey_configs, price_snapshots, app_settings
"""

import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint, Index

db = SQLAlchemy()

Amount = db.Numeric(18, 6, asdecimal=False)


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


def _new_id():
    return str(uuid.uuid4())


class User(UserMixin, db.Model):
    """Account created on first OIDC sign-in"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    sub = db.Column(db.String(255), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255))
    name = db.Column(db.String(255))
    avatar = db.Column(db.String(512))
    created_at = db.Column(db.DateTime, default=utcnow)
    last_login_at = db.Column(db.DateTime, default=utcnow)

    trades = db.relationship('Trade', backref='user', lazy='dynamic', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<User {self.sub} ({self.email})>'

    def to_dict(self):
        return {
            'id': self.id,
            'sub': self.sub,
            'email': self.email,
            'name': self.name,
            'avatar': self.avatar,
        }


class Trade(db.Model):
    """A buy position; closed in full or split by partial sales"""
    __tablename__ = 'trades'

    id = db.Column(db.String(80), primary_key=True, default=_new_id)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    isin = db.Column(db.String(30), nullable=False, default='', index=True)
    ticker = db.Column(db.String(30))
    name = db.Column(db.String(200), nullable=False)
    buy_price = db.Column(Amount, nullable=False)
    quantity = db.Column(Amount, nullable=False)
    invested_eur = db.Column(Amount, nullable=False)
    buy_date = db.Column(db.Date, nullable=False)
    current_price = db.Column(Amount)
    currency = db.Column(db.String(3), nullable=False, default='EUR')
    price_provider = db.Column(db.String(20))

    # Derivatives (leverage is already contained in the quoted price)
    is_derivative = db.Column(db.Boolean, nullable=False, default=False)
    leverage = db.Column(Amount)
    product_type = db.Column(db.String(50))
    underlying = db.Column(db.String(100))
    knock_out = db.Column(Amount)
    option_type = db.Column(db.String(4))

    # Partial sales
    original_quantity = db.Column(Amount)
    is_partial_sale = db.Column(db.Boolean, nullable=False, default=False)
    parent_trade_id = db.Column(db.String(80))

    # Closing
    is_closed = db.Column(db.Boolean, nullable=False, default=False)
    closed_at = db.Column(db.DateTime)
    sell_price = db.Column(Amount)
    sell_total = db.Column(Amount)
    realized_pnl = db.Column(Amount)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    partial_sales = db.relationship(
        'PartialSale', backref='trade', cascade='all, delete-orphan',
        order_by='PartialSale.sold_at'
    )

    __table_args__ = (
        Index('idx_trades_user_closed', 'user_id', 'is_closed'),
    )

    def __repr__(self):
        state = 'closed' if self.is_closed else 'open'
        return f'<Trade {self.isin or self.ticker} x{self.quantity} @ {self.buy_price} ({state})>'

    def to_dict(self):
        return {
            'id': self.id,
            'isin': self.isin,
            'ticker': self.ticker,
            'name': self.name,
            'buyPrice': self.buy_price,
            'quantity': self.quantity,
            'investedEur': self.invested_eur,
            'buyDate': self.buy_date.isoformat(),
            'currentPrice': self.current_price,
            'currency': self.currency,
            'priceProvider': self.price_provider,
            'isDerivative': self.is_derivative,
            'leverage': self.leverage,
            'productType': self.product_type,
            'underlying': self.underlying,
            'knockOut': self.knock_out,
            'optionType': self.option_type,
            'originalQuantity': self.original_quantity,
            'isPartialSale': self.is_partial_sale,
            'parentTradeId': self.parent_trade_id,
            'partialSales': [sale.to_dict() for sale in self.partial_sales],
            'isClosed': self.is_closed,
            'closedAt': _iso(self.closed_at),
            'sellPrice': self.sell_price,
            'sellTotal': self.sell_total,
            'realizedPnL': self.realized_pnl,
        }


class PartialSale(db.Model):
    """Record of part of a position sold off a parent trade"""
    __tablename__ = 'partial_sales'

    id = db.Column(db.String(80), primary_key=True, default=_new_id)
    trade_id = db.Column(db.String(80), db.ForeignKey('trades.id'), nullable=False, index=True)
    sold_quantity = db.Column(Amount, nullable=False)
    sell_price = db.Column(Amount, nullable=False)
    sell_total = db.Column(Amount, nullable=False)
    realized_pnl = db.Column(Amount, nullable=False)
    sold_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'soldQuantity': self.sold_quantity,
            'sellPrice': self.sell_price,
            'sellTotal': self.sell_total,
            'realizedPnL': self.realized_pnl,
            'soldAt': _iso(self.sold_at),
        }


class SankeyConfig(db.Model):
    """One saved budget breakdown per user"""
    __tablename__ = 'sankey_configs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    config = db.Column(db.JSON, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<SankeyConfig user={self.user_id}>'


class PriceSnapshot(db.Model):
    """Quote recorded by the snapshot job"""
    __tablename__ = 'price_snapshots'

    id = db.Column(db.Integer, primary_key=True)
    identifier = db.Column(db.String(30), nullable=False, index=True)
    price = db.Column(Amount, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='EUR')
    source = db.Column(db.String(20))
    snapshot_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint('identifier', 'snapshot_at', name='uix_identifier_snapshot_at'),
        CheckConstraint('price > 0', name='ck_snapshot_price_positive'),
        Index('idx_snapshot_identifier_time', 'identifier', 'snapshot_at'),
    )

    def __repr__(self):
        return f'<PriceSnapshot {self.identifier} @ {self.snapshot_at}: {self.price}>'

    def to_dict(self):
        return {
            'identifier': self.identifier,
            'price': self.price,
            'currency': self.currency,
            'source': self.source,
            'snapshotAt': _iso(self.snapshot_at),
        }


class AppSetting(db.Model):
    """System settings (key-value store)"""
    __tablename__ = 'app_settings'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), unique=True, nullable=False)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<AppSetting {self.key}={self.value}>'

    @staticmethod
    def get_value(key, default=None):
        """Get setting value by key"""
        setting = AppSetting.query.filter_by(key=key).first()
        return setting.value if setting else default

    @staticmethod
    def set_value(key, value):
        """Set setting value (create or update)"""
        setting = AppSetting.query.filter_by(key=key).first()
        if setting:
            setting.value = str(value)
            setting.updated_at = utcnow()
        else:
            setting = AppSetting(key=key, value=str(value))
            db.session.add(setting)
        db.session.commit()
        return setting
