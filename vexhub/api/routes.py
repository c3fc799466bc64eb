from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
import logging

from vexhub.models.models import Location, Version, VEXRepository
from vexhub.services.archive import build_archive
from vexhub.services.snapshot import SnapshotStore

logger = logging.getLogger(__name__)

ARCHIVE_FILE = "vex-data.tar.gz"


def create_router(snapshots: SnapshotStore, document_name: str, update_interval: str) -> APIRouter:
    """Read-only VEX repository endpoints.

    Each handler captures the published snapshot once, so the body it
    returns always belongs to a single generation.
    """
    router = APIRouter()

    @router.get("/.well-known/vex-repository.json", response_model=VEXRepository)
    async def get_manifest(request: Request):
        """VEX repository manifest pointing at the archive on this host"""
        logger.info("manifest handler triggered")
        host = request.headers.get("host") or request.url.netloc
        return VEXRepository(
            name="VEX Repository",
            description="VEX repository for vulnerability information",
            versions=[
                Version(
                    spec_version="0.1",
                    locations=[Location(url=f"https://{host}/{ARCHIVE_FILE}")],
                    update_interval=update_interval,
                )
            ],
        )

    @router.get("/index.json")
    async def get_index():
        logger.info("index.json handler triggered")
        snapshot = snapshots.current()
        return JSONResponse(content=snapshot.index.model_dump(mode="json"))

    @router.get(f"/{ARCHIVE_FILE}")
    async def get_archive():
        logger.info("targz handler triggered")
        snapshot = snapshots.current()
        data = build_archive(snapshot, document_name)
        return Response(
            content=data,
            media_type="application/gzip",
            headers={"Content-Disposition": f"attachment; filename={ARCHIVE_FILE}"},
        )

    @router.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "generation": snapshots.current().generation}

    @router.get("/metrics")
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return router
