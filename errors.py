# errors.py
"""
Application error types and the JSON error handler used by API routes.
"""

import logging
from functools import wraps
from typing import Dict, Optional

from flask import jsonify

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base error carrying an HTTP status and a machine-readable code."""

    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message: str, status_code: Optional[int] = None,
                 code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self) -> Dict:
        body = {'error': self.message, 'code': self.code}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = 'VALIDATION_ERROR'


class AuthenticationError(AppError):
    status_code = 401
    code = 'AUTHENTICATION_ERROR'


class ForbiddenError(AppError):
    status_code = 403
    code = 'FORBIDDEN'


class NotFoundError(AppError):
    status_code = 404
    code = 'NOT_FOUND'


class RateLimitError(AppError):
    status_code = 429
    code = 'RATE_LIMIT_EXCEEDED'


class ServiceUnavailableError(AppError):
    status_code = 503
    code = 'SERVICE_UNAVAILABLE'


def api_error_handler(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except AppError as e:
            if e.status_code >= 500:
                logger.error(f"{f.__name__}: {e.message}")
            return jsonify(e.to_dict()), e.status_code
        except ValueError as e:
            return jsonify({'error': str(e), 'code': 'VALIDATION_ERROR'}), 400
        except Exception:
            logger.exception(f"Error in {f.__name__}")
            return jsonify({'error': 'An error occurred', 'code': 'INTERNAL_ERROR'}), 500
    return wrapper
