import io
import json
import tarfile
import pytest
from unittest.mock import patch
from httpx import ASGITransport, AsyncClient

from conftest import FakeFragmentStore, mitigated
from vexhub.core.app import create_app
from vexhub.services.aggregator import FragmentAggregator
from vexhub.vex.openvex import generate_vex, serialize_document


@pytest.fixture
def aggregator(snapshots, document_format, vex_info):
    store = FakeFragmentStore({
        "default.web": serialize_document(
            generate_vex([mitigated("CVE-1", "pkg:deb/debian/openssl@3.0")], vex_info)
        ).decode("utf-8"),
    })
    return FragmentAggregator(store, snapshots, document_format, location="vex8s.json")


@pytest.fixture
async def client(app_config, snapshots):
    app = create_app(app_config, snapshots)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://vexhub.test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "generation": 0}


@pytest.mark.asyncio
async def test_manifest_points_at_archive_on_request_host(client: AsyncClient):
    response = await client.get("/.well-known/vex-repository.json", headers={"host": "vex.example.com:8443"})
    assert response.status_code == 200
    manifest = response.json()
    assert manifest["name"] == "VEX Repository"
    version = manifest["versions"][0]
    assert version["spec_version"] == "0.1"
    assert version["locations"] == [{"url": "https://vex.example.com:8443/vex-data.tar.gz"}]
    # Same source of truth as the aggregation timer (15 seconds by default)
    assert version["update_interval"] == "15s"


@pytest.mark.asyncio
async def test_index_before_first_aggregation(client: AsyncClient):
    response = await client.get("/index.json")
    assert response.status_code == 200
    assert response.json()["packages"] == []


@pytest.mark.asyncio
async def test_index_after_aggregation(client: AsyncClient, aggregator):
    snapshot = aggregator.refresh()

    response = await client.get("/index.json")

    data = response.json()
    assert data["packages"] == [
        {"id": "pkg:deb/debian/openssl", "location": "vex8s.json", "format": "openvex"}
    ]
    assert data["updated_at"] == snapshot.document.timestamp


@pytest.mark.asyncio
async def test_archive_contains_index_and_document(client: AsyncClient, aggregator):
    aggregator.refresh()

    response = await client.get("/vex-data.tar.gz")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/gzip"
    assert response.headers["content-disposition"] == "attachment; filename=vex-data.tar.gz"

    with tarfile.open(fileobj=io.BytesIO(response.content), mode="r:gz") as tar:
        members = tar.getmembers()
        assert [m.name for m in members] == ["index.json", "vex8s.json"]
        assert all(m.mode == 0o644 for m in members)
        index = json.loads(tar.extractfile("index.json").read())
        document_bytes = tar.extractfile("vex8s.json").read()

    served_index = (await client.get("/index.json")).json()
    assert index == served_index
    document = json.loads(document_bytes)
    assert document["statements"][0]["vulnerability"]["name"] == "CVE-1"
    assert document["timestamp"] == index["updated_at"]
    assert members[1].size == len(document_bytes)


@pytest.mark.asyncio
async def test_archive_failure_returns_generic_500(app_config, snapshots):
    app = create_app(app_config, snapshots)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="https://vexhub.test") as ac:
        with patch("vexhub.api.routes.build_archive", side_effect=RuntimeError("disk on fire")):
            response = await ac.get("/vex-data.tar.gz")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal server error"
    assert "disk on fire" not in response.text


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient):
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "vexhub_aggregation_cycles_total" in response.text
