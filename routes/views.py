# routes/views.py
"""
HTML page routes.
Serves the dashboard and the budget Sankey page.
"""

from flask import Blueprint, render_template
from flask_login import current_user

views_bp = Blueprint('views', __name__)


@views_bp.route('/')
def index():
    """Main dashboard page"""
    return render_template('dashboard.html', user=current_user)


@views_bp.route('/sankey')
def sankey():
    return render_template('sankey.html', user=current_user)


@views_bp.route('/health')
def health():
    """Health check endpoint for deployment platforms"""
    return {'status': 'healthy'}, 200
