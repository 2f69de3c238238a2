"""
Main entry point for WeRead Sync Service.

Starts the Flask web API and the auto sync scheduler.
"""

import atexit
from datetime import datetime, timezone
from typing import Optional

from flask import Flask

from weread_sync.config import AppConfig, ConfigManager, get_config_from_env
from weread_sync.db.database import init_db, close_db
from weread_sync.scheduler import AutoSyncScheduler, SyncRunner
from weread_sync.storage.repository import StateRepository
from weread_sync.storage.state_store import SqlStateStore
from weread_sync.sync.engine import create_sync_engine
from weread_sync.sync.models import SyncProgress
from weread_sync.utils.logging import get_logger, setup_logging, init_db_logging
from weread_sync.web import AppServices, EXTENSION_KEY

logger = get_logger(__name__)


def log_progress(progress: SyncProgress) -> None:
    """Progress listener for manual runs."""
    logger.info(
        "Sync progress",
        book=progress.current_book_index,
        total=progress.total_books,
        title=progress.current_book_title,
        completed=progress.completed,
    )


def build_services(config: AppConfig, repository: Optional[StateRepository] = None) -> AppServices:
    """Wire the repository, engine, runner and scheduler together."""
    repository = repository or StateRepository(SqlStateStore())
    config_manager = ConfigManager(repository)
    engine = create_sync_engine(repository, config, progress_listener=log_progress)
    runner = SyncRunner(engine)

    return AppServices(
        repository=repository,
        config_manager=config_manager,
        engine=engine,
        runner=runner,
        scheduler=AutoSyncScheduler(runner, config_manager),
    )


def create_app(services: AppServices, config: Optional[AppConfig] = None) -> Flask:
    """
    Create and configure the Flask application.

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)

    config = config or get_config_from_env()
    app.secret_key = config.secret_key
    app.extensions[EXTENSION_KEY] = services

    # Register blueprints
    from weread_sync.web.routes.config import config_bp
    from weread_sync.web.routes.api import api_bp

    app.register_blueprint(config_bp)
    app.register_blueprint(api_bp)

    # Health check
    @app.route('/health')
    def health():
        return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()}

    return app


def main():
    """Main entry point."""
    config = get_config_from_env()

    # Setup logging
    setup_logging(config.log_level, json_logs=config.log_format == "json")

    # Initialize database
    init_db(config.database_url)

    # Initialize database logging (must be after init_db)
    init_db_logging()

    logger.info(
        "Starting WeRead Sync Service",
        version="0.1.0",
        database_url=config.database_url,
    )

    services = build_services(config)
    app = create_app(services, config)

    # Start scheduler
    services.scheduler.start()

    # Register shutdown handler
    atexit.register(services.scheduler.shutdown)
    atexit.register(services.engine.close)
    atexit.register(close_db)

    # Run Flask app with waitress
    from waitress import serve
    serve(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
