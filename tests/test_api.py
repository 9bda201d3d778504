"""
Tests for the HTTP API, including error mapping.
"""

import base64
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from stuff_search.api.main import app, get_service
from stuff_search.core.errors import CaptioningError, EmbeddingError

from conftest import make_photo

DRILL_PHOTO = make_photo(1)
CLIP_PHOTO = make_photo(2)
BLURRY_PHOTO = make_photo(3)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def client(service, captioner):
    captioner.register(DRILL_PHOTO, "drill tap set", "a set of metal taps for cutting internal threads")
    captioner.register(CLIP_PHOTO, "paperclip box", "a small box of steel paperclips")
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def create_container(client, name, **extra):
    response = client.post("/containers", json={"name": name, **extra})
    assert response.status_code == 201
    return response.json()


def ingest(client, container_id, *photos):
    images = [{"source": f"photo{i}.jpg", "data": b64(p)} for i, p in enumerate(photos)]
    return client.post(f"/containers/{container_id}/ingest", json={"images": images})


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["db_health"] is True
    assert data["counts"]["items"] == 0
    assert data["drift"] == {}


def test_container_crud(client):
    garage = create_container(client, "Garage", location="detached")
    shelf = create_container(client, "Shelf 1", parent_id=garage["id"])

    assert shelf["path"] == ["Garage", "Shelf 1"]
    assert client.get(f"/containers/{garage['id']}").json()["location"] == "detached"
    assert len(client.get("/containers").json()["containers"]) == 2

    assert client.delete(f"/containers/{garage['id']}").status_code == 409
    assert client.delete(f"/containers/{shelf['id']}").status_code == 204
    assert client.get(f"/containers/{shelf['id']}").status_code == 404


def test_container_validation_errors(client):
    assert client.post("/containers", json={"name": "  "}).status_code == 422
    response = client.post("/containers", json={"name": "Bin", "parent_id": 77})
    assert response.status_code == 404
    assert response.json()["error_type"] == "ContainerNotFound"


def test_move_container_cycle_is_400(client):
    a = create_container(client, "A")
    b = create_container(client, "B", parent_id=a["id"])

    response = client.post(f"/containers/{a['id']}/move", json={"parent_id": b["id"]})

    assert response.status_code == 400
    assert response.json()["error_type"] == "CycleDetected"

    response = client.post(f"/containers/{b['id']}/move", json={"parent_id": None})
    assert response.json()["path"] == ["B"]


def test_ingest_and_search(client, captioner, monkeypatch):
    describe = captioner.describe

    def flaky_describe(image):
        if image == BLURRY_PHOTO:
            raise CaptioningError("model returned no caption")
        return describe(image)
    monkeypatch.setattr(captioner, "describe", flaky_describe)
    shelf = create_container(client, "Shelf 1")

    response = ingest(client, shelf["id"], DRILL_PHOTO, BLURRY_PHOTO, CLIP_PHOTO)

    assert response.status_code == 200
    report = response.json()
    assert [o["status"] for o in report["outcomes"]] == ["succeeded", "failed", "succeeded"]
    assert report["succeeded"] == 2

    response = client.get("/search", params={"q": "tool for making threads in holes", "k": 5})
    assert response.status_code == 200
    results = response.json()["results"]
    assert results[0]["name"] == "drill tap set"
    assert results[0]["container_path"] == ["Shelf 1"]
    assert results[0]["score"] > results[1]["score"]


def test_ingest_bad_base64(client):
    shelf = create_container(client, "Shelf 1")
    response = client.post(f"/containers/{shelf['id']}/ingest",
                           json={"images": [{"source": "x.jpg", "data": "not base64!!"}]})
    assert response.status_code == 400


def test_ingest_unknown_container(client):
    assert ingest(client, 999, DRILL_PHOTO).status_code == 404


def test_search_validation(client):
    assert client.get("/search", params={"q": "   "}).status_code == 400
    assert client.get("/search", params={"q": "drill", "k": 0}).status_code == 400
    response = client.get("/search", params={"q": "drill"})
    assert response.status_code == 200
    assert response.json()["results"] == []


def test_search_embedding_failure_is_502(client, service, monkeypatch):
    failing = MagicMock()
    failing.embed_query.side_effect = EmbeddingError(EmbeddingError.MODEL_UNAVAILABLE, "model not loaded")
    monkeypatch.setattr(service.retrieval, "gateway", failing)

    response = client.get("/search", params={"q": "drill"})

    assert response.status_code == 502
    assert response.json()["kind"] == "model_unavailable"


def test_item_lifecycle(client):
    shelf = create_container(client, "Shelf 1")
    drawer = create_container(client, "Drawer")
    item_id = ingest(client, shelf["id"], DRILL_PHOTO).json()["outcomes"][0]["item_id"]

    item = client.get(f"/items/{item_id}").json()
    assert item["indexed"] is True
    assert item["container_id"] == shelf["id"]

    moved = client.post(f"/items/{item_id}/move", json={"container_id": drawer["id"]}).json()
    assert moved["container_id"] == drawer["id"]
    assert client.post(f"/items/{item_id}/move", json={"container_id": 999}).status_code == 404

    edited = client.put(f"/items/{item_id}/description",
                        json={"description": "usb charger cable", "name": "usb cable"}).json()
    assert edited["name"] == "usb cable"
    results = client.get("/search", params={"q": "usb charger", "k": 1}).json()["results"]
    assert results[0]["item_id"] == item_id
    assert results[0]["container_path"] == ["Drawer"]

    assert [i["id"] for i in client.get("/items", params={"container_id": drawer["id"]}).json()["items"]] == [item_id]

    assert client.delete(f"/items/{item_id}").status_code == 204
    assert client.get(f"/items/{item_id}").status_code == 404
    assert client.get("/search", params={"q": "usb charger"}).json()["results"] == []


def test_imports_endpoint(client, service):
    shelf = create_container(client, "Shelf 1")

    response = client.post("/imports", json={"source": "drill.jpg", "data": b64(DRILL_PHOTO),
                                             "container_id": shelf["id"]})
    assert response.status_code == 202
    import_id = response.json()["id"]
    assert service.import_queue.wait(import_id, timeout=10)

    record = client.get(f"/imports/{import_id}").json()
    assert record["status"] == "complete"
    assert record["succeeded"] == 1
    assert [r["id"] for r in client.get("/imports").json()["imports"]] == [import_id]
    assert client.get("/imports/999").status_code == 404
    assert client.post("/imports", json={"source": "x.jpg", "data": b64(DRILL_PHOTO),
                                         "container_id": 999}).status_code == 404


def test_non_image_import_is_cancelled(client, service):
    shelf = create_container(client, "Shelf 1")

    response = client.post("/imports", json={"source": "notes.txt", "data": b64(b"not a photo"),
                                             "container_id": shelf["id"]})
    import_id = response.json()["id"]
    assert service.import_queue.wait(import_id, timeout=10)

    record = client.get(f"/imports/{import_id}").json()
    assert record["status"] == "cancelled"
    assert record["message"] == "file not an image"


def test_item_carries_thumbnail(client):
    shelf = create_container(client, "Shelf 1")
    item_id = ingest(client, shelf["id"], DRILL_PHOTO).json()["outcomes"][0]["item_id"]

    item = client.get(f"/items/{item_id}").json()
    assert item["image_ref"]
    assert item["thumbnail_ref"]
    hit = client.get("/search", params={"q": "drill"}).json()["results"][0]
    assert hit["thumbnail_ref"] == item["thumbnail_ref"]


def test_search_with_large_k(client):
    shelf = create_container(client, "Shelf 1")
    ingest(client, shelf["id"], DRILL_PHOTO, CLIP_PHOTO)

    response = client.get("/search", params={"q": "drill", "k": 100000})

    assert response.status_code == 200
    assert len(response.json()["results"]) == 2


def test_shutdown_closes_service(monkeypatch):
    from stuff_search.api import main

    service = MagicMock()
    monkeypatch.setattr(main, "_service", service)

    with TestClient(app):
        pass

    service.close.assert_called_once()
    assert main._service is None
