# auth.py
"""
Authentication module.
Users sign in through an OpenID Connect issuer (Logto by default) via Authlib;
Flask-Login keeps the resulting user in the session.
"""

import logging

from flask import jsonify, redirect, request, url_for
from flask_login import LoginManager

from extensions import oauth
from models import User, db, utcnow

logger = logging.getLogger(__name__)

login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id):
    """Flask-Login user loader callback."""
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    """Handle unauthorized access - return JSON for API, redirect for pages."""
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Authentication required', 'code': 'AUTHENTICATION_ERROR'}), 401
    return redirect(url_for('auth.sign_in', next=request.path))


def discovery_url(endpoint: str) -> str:
    return f"{endpoint}/oidc/.well-known/openid-configuration"


def upsert_user_from_claims(claims) -> User:
    """
    Find or create the local user for an ID token's claims.

    The ``sub`` claim is the stable identity; email, name and avatar are
    refreshed on every sign-in.
    """
    sub = claims.get('sub')
    if not sub:
        raise ValueError("ID token has no subject")

    user = User.query.filter_by(sub=sub).first()
    if user is None:
        user = User(sub=sub)
        db.session.add(user)
        logger.info(f"Created user for subject {sub}")

    user.email = claims.get('email') or user.email
    user.name = claims.get('name') or claims.get('username') or user.name
    user.avatar = claims.get('picture') or user.avatar
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def init_auth(app):
    """Initialize Flask-Login and register the OIDC client."""
    login_manager.init_app(app)
    login_manager.login_view = 'auth.sign_in'

    oauth.init_app(app)
    endpoint = app.config.get('OIDC_ENDPOINT')
    if not endpoint or not app.config.get('OIDC_CLIENT_ID'):
        logger.warning("OIDC_ENDPOINT/OIDC_CLIENT_ID not set - sign-in is disabled")
        return

    oauth.register(
        name='oidc',
        client_id=app.config['OIDC_CLIENT_ID'],
        client_secret=app.config.get('OIDC_CLIENT_SECRET'),
        server_metadata_url=discovery_url(endpoint),
        client_kwargs={'scope': app.config['OIDC_SCOPES']},
    )
