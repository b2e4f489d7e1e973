# extensions.py
"""
Flask extensions initialization.
Centralized to avoid circular imports.
"""

from authlib.integrations.flask_client import OAuth
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter

from security import get_client_ip

# Initialize extensions without app
csrf = CSRFProtect()
limiter = Limiter(key_func=get_client_ip, default_limits=["200 per hour"])
oauth = OAuth()
