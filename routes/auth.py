# routes/auth.py
"""
Sign-in, callback and sign-out routes for the OIDC flow.
"""

import logging
from urllib.parse import urlencode

from authlib.integrations.base_client.errors import OAuthError
from flask import Blueprint, abort, current_app, redirect, session, url_for
from flask import request
from flask_login import login_user, logout_user

from auth import upsert_user_from_claims
from extensions import limiter, oauth

logger = logging.getLogger(__name__)
auth_bp = Blueprint('auth', __name__)


def _client():
    client = oauth.create_client('oidc')
    if client is None:
        abort(503, description='Sign-in is not configured')
    return client


def _safe_next(target):
    # Only same-site relative paths
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return url_for('views.index')


@auth_bp.route('/sign-in')
@limiter.limit("20 per minute")
def sign_in():
    session['next_url'] = _safe_next(request.args.get('next'))
    redirect_uri = f"{current_app.config['BASE_URL']}{url_for('auth.callback')}"
    return _client().authorize_redirect(redirect_uri)


@auth_bp.route('/callback')
@limiter.limit("20 per minute")
def callback():
    client = _client()
    try:
        token = client.authorize_access_token()
    except OAuthError as e:
        logger.warning(f"OIDC callback failed: {e.error}")
        return redirect(url_for('views.index'))

    claims = token.get('userinfo') or client.userinfo(token=token)
    user = upsert_user_from_claims(claims)
    login_user(user, remember=True)
    logger.info(f"User {user.id} signed in")
    return redirect(session.pop('next_url', None) or url_for('views.index'))


@auth_bp.route('/sign-out', methods=['GET', 'POST'])
def sign_out():
    logout_user()
    session.clear()

    home = current_app.config['BASE_URL'] + url_for('views.index')
    client = oauth.create_client('oidc')
    if client is None:
        return redirect(home)
    try:
        end_session = client.load_server_metadata().get('end_session_endpoint')
    except Exception as e:
        logger.warning(f"Could not load OIDC metadata for sign-out: {e}")
        end_session = None
    if not end_session:
        return redirect(home)
    params = urlencode({'client_id': client.client_id, 'post_logout_redirect_uri': home})
    return redirect(f"{end_session}?{params}")
