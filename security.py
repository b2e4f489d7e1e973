# security.py
"""
Request-level security helpers: client IP resolution and Origin/Referer checks
for state-changing API calls.
"""

import logging
from typing import List, Optional
from urllib.parse import urlparse

from flask import current_app, request
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

SAFE_METHODS = {'GET', 'HEAD', 'OPTIONS'}


def get_client_ip() -> str:
    """First hop of X-Forwarded-For, else X-Real-IP, else the socket address."""
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    real_ip = request.headers.get('X-Real-IP', '').strip()
    if real_ip:
        return real_ip
    return get_remote_address() or 'unknown'


def _origin_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def get_allowed_origins() -> List[str]:
    config = current_app.config
    allowed = []
    base = _origin_of(config.get('BASE_URL'))
    if base:
        allowed.append(base)
    allowed.extend(config.get('ALLOWED_ORIGINS') or [])
    if config.get('DEBUG'):
        allowed.extend(['http://localhost:5000', 'http://127.0.0.1:5000'])
    # The request's own host is always same-origin
    allowed.append(request.host_url.rstrip('/'))
    return list(dict.fromkeys(allowed))


def verify_origin() -> bool:
    """
    Check that an unsafe request comes from an allowed origin.

    The Origin header is preferred; when a browser omits it the Referer's
    origin is used. Requests carrying neither are rejected.
    """
    if request.method in SAFE_METHODS:
        return True

    origin = request.headers.get('Origin')
    if not origin:
        origin = _origin_of(request.headers.get('Referer'))
    if not origin:
        logger.warning(f"Rejected {request.method} {request.path}: no Origin or Referer")
        return False

    allowed = get_allowed_origins()
    if origin.rstrip('/') not in allowed:
        logger.warning(f"Rejected {request.method} {request.path}: origin {origin} not allowed")
        return False
    return True
