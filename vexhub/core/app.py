from fastapi import FastAPI
import logging

from vexhub.config import Config
from vexhub.services.snapshot import SnapshotStore
from vexhub.api.routes import create_router
from vexhub.api.middleware import configure_exception_handlers

logger = logging.getLogger(__name__)


def create_app(config: Config, snapshots: SnapshotStore) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(title="VEX Hub", version="0.1.0")

    configure_exception_handlers(app)
    app.include_router(create_router(snapshots, config.store_name, config.update_interval_label))

    return app
