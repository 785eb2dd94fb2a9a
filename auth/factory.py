"""
auth/factory.py -- Build the configured StorageAdapter and SecurityManager.

The only module that knows both concrete adapters. Everything else receives
a StorageAdapter (or a SecurityManager) and never branches on the backend.

Layer rule: may import from core/ (the kernel); no imports from api/.
"""

from __future__ import annotations

import logging

from auth.adapter import StorageAdapter
from auth.manager import SecurityManager
from auth.store import SqlStore
from auth.xml_store import XmlStore
from core.config import Settings

logger = logging.getLogger("gatehouse.factory")


def create_adapter(settings: Settings) -> StorageAdapter:
    if settings.storage_backend == "xml":
        return XmlStore(settings.xml_path)
    return SqlStore(settings.database_url)


def create_manager(settings: Settings) -> SecurityManager:
    """Open the configured store and seed the first administrator if asked to."""
    manager = SecurityManager(create_adapter(settings))
    manager.open()
    logger.info("Opened %s security store", settings.storage_backend)
    if settings.bootstrap_admin_password:
        created = manager.bootstrap(
            settings.bootstrap_admin_login,
            settings.bootstrap_admin_password,
            settings.bootstrap_admin_role,
        )
        if created is not None:
            logger.info("Created first administrator %r", created.login)
    return manager
