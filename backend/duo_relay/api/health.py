import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

health = Blueprint('health', __name__)


@health.route('/health', methods=['GET'])
def get_health():
    stats = current_app.extensions['session_manager'].stats()
    started_at = current_app.extensions['relay_started_at']
    return jsonify({
        'status': 'healthy',
        'activeSessionCount': stats['totalSessionCount'],
        'totalOccupants': stats['totalOccupants'],
        'uptime': round(time.time() - started_at, 3),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })


@health.route('/stats', methods=['GET'])
def get_stats():
    return jsonify(current_app.extensions['session_manager'].stats())
