"""
Tests for the OIDC sign-in flow and session handling.
"""

import json
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from authlib.integrations.base_client.errors import OAuthError
from flask import redirect

from auth import discovery_url, unauthorized, upsert_user_from_claims
from models import User


@pytest.fixture
def oidc_client():
    """Stand-in for the registered Authlib client."""
    client = MagicMock()
    client.client_id = 'test-client'
    client.authorize_redirect.side_effect = lambda uri: redirect(f"https://auth.example.com/oidc/auth?redirect_uri={uri}")
    with patch('routes.auth.oauth.create_client', return_value=client):
        yield client


class TestUpsertUser:
    """Test mapping ID token claims to local users."""

    def test_creates_user(self, app):
        user = upsert_user_from_claims({
            'sub': 'new-sub',
            'email': 'new@example.com',
            'name': 'New Investor',
            'picture': 'https://cdn.example.com/a.png',
        })

        assert user.id is not None
        assert user.sub == 'new-sub'
        assert user.avatar == 'https://cdn.example.com/a.png'
        assert User.query.count() == 1

    def test_updates_existing_user(self, app, user):
        updated = upsert_user_from_claims({'sub': 'user-123', 'username': 'investor42'})

        assert updated.id == user.id
        assert updated.name == 'investor42'
        # Claims missing from the token keep the stored value
        assert updated.email == 'investor@example.com'
        assert User.query.count() == 1

    def test_requires_subject(self, app):
        with pytest.raises(ValueError):
            upsert_user_from_claims({'email': 'nobody@example.com'})

    def test_discovery_url(self):
        assert discovery_url('https://auth.example.com') == \
            'https://auth.example.com/oidc/.well-known/openid-configuration'


class TestSignIn:
    """Test the redirect to the identity provider and the callback."""

    def test_sign_in_redirects_to_provider(self, client, oidc_client):
        response = client.get('/sign-in?next=/sankey')

        assert response.status_code == 302
        assert response.headers['Location'].startswith('https://auth.example.com/oidc/auth')
        oidc_client.authorize_redirect.assert_called_once_with('http://localhost/callback')
        with client.session_transaction() as sess:
            assert sess['next_url'] == '/sankey'

    def test_open_redirects_are_ignored(self, client, oidc_client):
        client.get('/sign-in?next=//evil.example/phish')

        with client.session_transaction() as sess:
            assert sess['next_url'] == '/'

    def test_callback_signs_user_in(self, client, oidc_client):
        oidc_client.authorize_access_token.return_value = {
            'access_token': 'at',
            'userinfo': {'sub': 'fresh-sub', 'email': 'fresh@example.com', 'name': 'Fresh'},
        }
        with client.session_transaction() as sess:
            sess['next_url'] = '/sankey'

        response = client.get('/callback?code=abc&state=xyz')

        assert response.status_code == 302
        assert response.headers['Location'].endswith('/sankey')
        data = json.loads(client.get('/api/user').data)
        assert data['user']['email'] == 'fresh@example.com'

    def test_callback_falls_back_to_userinfo_endpoint(self, client, oidc_client):
        oidc_client.authorize_access_token.return_value = {'access_token': 'at'}
        oidc_client.userinfo.return_value = {'sub': 'userinfo-sub', 'name': 'From Userinfo'}

        client.get('/callback?code=abc&state=xyz')

        assert User.query.filter_by(sub='userinfo-sub').one().name == 'From Userinfo'

    def test_callback_error_returns_home(self, client, oidc_client):
        oidc_client.authorize_access_token.side_effect = OAuthError(error='access_denied')

        response = client.get('/callback?error=access_denied')

        assert response.status_code == 302
        assert urlparse(response.headers['Location']).path == '/'
        assert User.query.count() == 0

    def test_sign_in_unconfigured(self, client):
        with patch('routes.auth.oauth.create_client', return_value=None):
            response = client.get('/sign-in')
        assert response.status_code == 503


class TestSignOut:
    """Test sign-out and the provider's end-session redirect."""

    def test_sign_out_redirects_to_end_session(self, authenticated_client, oidc_client):
        oidc_client.load_server_metadata.return_value = {
            'end_session_endpoint': 'https://auth.example.com/oidc/session/end'
        }

        response = authenticated_client.get('/sign-out')

        location = urlparse(response.headers['Location'])
        assert location.netloc == 'auth.example.com'
        params = parse_qs(location.query)
        assert params['client_id'] == ['test-client']
        assert params['post_logout_redirect_uri'] == ['http://localhost/']
        assert authenticated_client.get('/api/user').status_code == 401

    def test_sign_out_without_metadata(self, authenticated_client, oidc_client):
        oidc_client.load_server_metadata.side_effect = ConnectionError('offline')

        response = authenticated_client.get('/sign-out')

        assert response.headers['Location'] == 'http://localhost/'


class TestUnauthorized:
    """Test the Flask-Login unauthorized handler."""

    def test_api_paths_get_json(self, app):
        with app.test_request_context('/api/trades'):
            response, status = unauthorized()
        assert status == 401
        assert response.get_json()['code'] == 'AUTHENTICATION_ERROR'

    def test_pages_redirect_to_sign_in(self, app):
        with app.test_request_context('/sankey'):
            response = unauthorized()
        assert response.status_code == 302
        location = urlparse(response.headers['Location'])
        assert location.path == '/sign-in'
        assert parse_qs(location.query)['next'] == ['/sankey']
