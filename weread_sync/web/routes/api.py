"""
API routes for WeRead Sync Service.
"""

from flask import Blueprint, jsonify, request

from weread_sync.db.database import get_db_session, is_initialized
from weread_sync.db.models import SyncLog
from weread_sync.scheduler import ALREADY_RUNNING_MESSAGE
from weread_sync.web import get_services
from weread_sync.utils.logging import get_logger

logger = get_logger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')


def _sync_response(result):
    if result is None:
        return jsonify({'success': False, 'error': ALREADY_RUNNING_MESSAGE}), 409
    return jsonify(result.to_dict())


@api_bp.route('/status')
def status():
    """Get current sync progress and last sync time."""
    services = get_services()
    progress = services.repository.get_progress()
    settings = services.repository.get_sync_settings()

    return jsonify({
        'running': services.runner.is_running,
        'state': services.engine.state.value,
        'last_state': services.engine.last_state.value if services.engine.last_state else None,
        'progress': progress.to_dict() if progress else None,
        'last_global_sync_at': settings.last_global_sync_at,
        'configured': services.config_manager.is_configured(),
    })


@api_bp.route('/sync', methods=['POST'])
def trigger_sync():
    """Manually trigger a full sync."""
    try:
        return _sync_response(get_services().runner.run_sync())
    except Exception as e:
        logger.exception("Manual sync failed", error=str(e))
        return jsonify({'success': False, 'error': str(e)}), 500


@api_bp.route('/sync/<book_id>', methods=['POST'])
def trigger_book_sync(book_id):
    """Manually sync one book."""
    try:
        return _sync_response(get_services().runner.run_single_book(book_id))
    except Exception as e:
        logger.exception("Manual book sync failed", book_id=book_id, error=str(e))
        return jsonify({'success': False, 'error': str(e)}), 500


@api_bp.route('/books')
def get_books():
    """List the WeRead shelf with per-book sync state."""
    services = get_services()
    repository = services.repository
    session = repository.get_session()

    if session is None:
        return jsonify({'success': False, 'error': 'Please log in to WeRead'}), 400

    reader = services.engine.reader_factory(session.value, repository.get_sync_settings())
    try:
        books = reader.get_bookshelf()
    except Exception as e:
        logger.error("Failed to list bookshelf", error=str(e))
        return jsonify({'success': False, 'error': str(e)}), 502
    finally:
        reader.close()

    synced = set(repository.get_synced_book_ids())
    auto_sync = set(repository.get_auto_sync_book_ids())
    checkpoints = repository.get_checkpoints()

    return jsonify([{
        'book_id': b.book_id,
        'title': b.title,
        'author': b.author,
        'cover_url': b.cover_url,
        'category': b.category,
        'synced': b.book_id in synced,
        'auto_sync': b.book_id in auto_sync,
        'last_synced_at': checkpoints.get(b.book_id, 0),
    } for b in books])


@api_bp.route('/history')
def get_history():
    """Get sync history, newest first."""
    limit = request.args.get('limit', 50, type=int)
    history = get_services().repository.get_history()[:limit]
    return jsonify([entry.to_dict() for entry in history])


@api_bp.route('/history/<entry_id>', methods=['DELETE'])
def delete_history_entry(entry_id):
    if not get_services().repository.delete_history_entry(entry_id):
        return jsonify({'success': False, 'error': 'History entry not found'}), 404
    return jsonify({'success': True})


@api_bp.route('/history', methods=['DELETE'])
def clear_history():
    get_services().repository.clear_history()
    return jsonify({'success': True})


@api_bp.route('/auto-sync-books')
def get_auto_sync_books():
    return jsonify(get_services().repository.get_auto_sync_book_ids())


@api_bp.route('/auto-sync-books/<book_id>', methods=['PUT'])
def add_auto_sync_book(book_id):
    get_services().repository.add_auto_sync_book(book_id)
    return jsonify({'success': True})


@api_bp.route('/auto-sync-books/<book_id>', methods=['DELETE'])
def remove_auto_sync_book(book_id):
    get_services().repository.remove_auto_sync_book(book_id)
    return jsonify({'success': True})


@api_bp.route('/synced-books', methods=['DELETE'])
def reset_synced_books():
    """Forget every synced book and checkpoint, so the next sync starts over."""
    get_services().repository.clear_synced_books()
    logger.info("Synced book registry reset")
    return jsonify({'success': True})


@api_bp.route('/export')
def export_state():
    return jsonify(get_services().repository.export_state())


@api_bp.route('/import', methods=['POST'])
def import_state():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'Expected a JSON object'}), 400

    services = get_services()
    try:
        services.repository.import_state(data)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    services.scheduler.reschedule()
    return jsonify({'success': True})


@api_bp.route('/logs')
def get_logs():
    """Get recent logs."""
    limit = request.args.get('limit', 100, type=int)
    level = request.args.get('level')
    run_id = request.args.get('run_id')

    if not is_initialized():
        return jsonify({'success': False, 'error': 'Log storage is not enabled'}), 503

    with get_db_session() as session:
        query = session.query(SyncLog)

        if level:
            query = query.filter(SyncLog.level == level.upper())
        if run_id:
            query = query.filter(SyncLog.sync_run_id == run_id)

        logs = query.order_by(SyncLog.id.desc()).limit(limit).all()
        return jsonify([log.to_dict() for log in logs])
