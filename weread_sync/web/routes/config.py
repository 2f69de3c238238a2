"""
Configuration routes for WeRead Sync Service.
"""

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from weread_sync.config import DestinationCredentials, SourceSession, SESSION_LIFETIME_DAYS
from weread_sync.web import get_services
from weread_sync.utils.logging import get_logger

logger = get_logger(__name__)

config_bp = Blueprint('config', __name__, url_prefix='/api')


@config_bp.route('/settings')
def get_settings():
    return jsonify(get_services().config_manager.get_settings().model_dump(mode="json"))


@config_bp.route('/settings', methods=['PUT'])
def update_settings():
    """Update sync settings and re-apply the auto sync schedule."""
    changes = request.get_json(silent=True) or {}
    services = get_services()

    try:
        settings = services.config_manager.update_settings(**changes)
    except ValidationError as e:
        return jsonify({'success': False, 'error': e.errors(include_url=False)}), 400

    services.scheduler.reschedule()
    logger.info("Settings saved", auto_sync=settings.auto_sync_enabled)
    return jsonify(settings.model_dump(mode="json"))


@config_bp.route('/settings/last-sync', methods=['DELETE'])
def reset_last_sync():
    get_services().repository.reset_last_sync_time()
    return jsonify({'success': True})


@config_bp.route('/credentials')
def get_credentials():
    credentials = get_services().repository.get_credentials()
    return jsonify({
        'user_id': credentials.user_id,
        'username': credentials.username,
        'configured': credentials.is_complete,
    })


@config_bp.route('/credentials', methods=['PUT'])
def save_credentials():
    """Validate and save Writeathon credentials."""
    data = request.get_json(silent=True) or {}
    credentials = DestinationCredentials(
        api_token=data.get('api_token', ''),
        user_id=str(data.get('user_id', '')),
    )

    writer = get_services().engine.writer
    if not writer.validate_credentials(credentials):
        return jsonify({'success': False, 'error': 'Writeathon API token or user id is invalid'}), 400

    user = writer.get_user_info(credentials) or {}
    credentials.username = user.get('username')
    get_services().repository.save_credentials(credentials)

    return jsonify({'success': True, 'username': credentials.username})


@config_bp.route('/session', methods=['PUT'])
def save_session():
    """Store the WeRead cookie."""
    data = request.get_json(silent=True) or {}
    cookie = data.get('cookie')
    if not cookie:
        return jsonify({'success': False, 'error': 'Missing cookie'}), 400

    days = data.get('expires_in_days', SESSION_LIFETIME_DAYS)
    get_services().repository.save_session(SourceSession.create(cookie, days))
    return jsonify({'success': True})


@config_bp.route('/session', methods=['DELETE'])
def clear_session():
    get_services().repository.clear_session()
    return jsonify({'success': True})
