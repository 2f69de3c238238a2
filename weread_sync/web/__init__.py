"""
Web API for WeRead Sync Service.
"""

from dataclasses import dataclass

from flask import current_app

from weread_sync.config import ConfigManager
from weread_sync.scheduler import AutoSyncScheduler, SyncRunner
from weread_sync.storage.repository import StateRepository
from weread_sync.sync.engine import SyncEngine

EXTENSION_KEY = "weread_sync"


@dataclass
class AppServices:
    """Collaborators shared by the request handlers."""
    repository: StateRepository
    config_manager: ConfigManager
    engine: SyncEngine
    runner: SyncRunner
    scheduler: AutoSyncScheduler


def get_services() -> AppServices:
    return current_app.extensions[EXTENSION_KEY]
