from flask import Blueprint, jsonify, request, current_app
from datetime import datetime, timezone
from studyroom.services.timers import get_timer_service

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the study room timer server!'})


@main.route('/health')
def health():
    return jsonify({'status': 'OK', 'timestamp': datetime.now(timezone.utc).isoformat()})


@main.route('/api/users/<string:user_id>/stats', methods=['GET'])
def user_stats(user_id):
    """Today's ledger, archived days and dead-time gaps for one user."""
    service = get_timer_service()
    engine = service.store.get(user_id)
    if engine is None:
        return jsonify({'error': 'User not found'}), 404
    return jsonify(engine.stats(threshold_minutes=service.dead_time_threshold))


@main.route('/api/persistence/status', methods=['GET'])
def persistence_status():
    return jsonify(get_timer_service().persistence.status())


@main.route('/api/persistence/save', methods=['POST'])
def persistence_save():
    saved = get_timer_service().persistence.save_all()
    return jsonify({
        'message': 'Data saved successfully' if saved else 'Nothing saved',
        'saved_users': saved,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })


@main.route('/api/persistence/recovery', methods=['GET'])
def persistence_recovery():
    return jsonify(get_timer_service().recovery_report())


@main.route('/api/persistence/cleanup', methods=['POST'])
def persistence_cleanup():
    data = request.get_json(silent=True) or {}
    try:
        days = int(data.get('days_to_keep', current_app.config.get('HISTORY_RETENTION_DAYS', 30)))
    except (TypeError, ValueError):
        return jsonify({'error': 'days_to_keep must be an integer'}), 400
    if days < 0:
        return jsonify({'error': 'days_to_keep must not be negative'}), 400
    removed = get_timer_service().persistence.cleanup_old_history(days)
    return jsonify({'message': f'Data older than {days} days cleaned up', 'removed_days': removed})
