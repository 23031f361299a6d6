import pytest
from fastapi.testclient import TestClient

from fuel_agent.config import settings
from fuel_agent.main import app, get_ocr_session
from fuel_agent.services.ocr import OcrSession


@pytest.fixture
def backend(fake_backend_cls, pump_ocr, odometer_ocr):
    return fake_backend_cls(by_height={1000: pump_ocr, 667: odometer_ocr})


@pytest.fixture
def client(backend):
    session = OcrSession(backend=backend)
    app.dependency_overrides[get_ocr_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "backend": "fake"}


def test_extract(client, make_image):
    files = [
        ("files", ("a.png", make_image(200, 100), "image/png")),
        ("files", ("b.png", make_image(300, 100), "image/png")),
    ]
    r = client.post("/extract", files=files)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "complete"
    assert body["failures"] == []
    assert body["pump"]["gallons"] == {"value": pytest.approx(9.811), "confidence": 90.0, "level": "high"}
    assert body["pump"]["price_per_gallon"]["value"] == pytest.approx(35.51 / 9.811)
    assert body["odometer"]["miles"] == {"value": 168237, "confidence": 93.0, "level": "high"}
    assert "message" not in body


def test_extract_nothing_readable(client):
    r = client.post("/extract", files=[("files", ("x.jpg", b"garbage", "image/jpeg"))])
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "failed"
    assert body["failures"][0]["code"] == "IMAGE_DECODE_FAILED"
    assert body["pump"]["gallons"] == {"value": None, "confidence": 0.0, "level": None}
    assert body["message"]


def test_extract_too_many_photos(client, make_image, monkeypatch):
    monkeypatch.setattr(settings, "MAX_PHOTOS", 1)
    img = make_image()
    r = client.post("/extract", files=[("files", ("a.png", img, "image/png")), ("files", ("b.png", img, "image/png"))])
    assert r.status_code == 400


def test_extract_oversized_photo(client, make_image, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 10)
    r = client.post("/extract", files=[("files", ("a.png", make_image(), "image/png"))])
    assert r.status_code == 413


def test_parse(client):
    payload = {"results": [
        {"text": "168237", "lines": []},
        {"text": "GALLONS\n9.811\nSALE $35.51", "lines": [{"text": "9.811", "confidence": 90}]},
    ]}
    r = client.post("/parse", json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body["odometer"]["miles"] == {"value": 168237, "confidence": 70.0, "level": "medium"}
    assert body["odometer"]["confidence"] == 70.0
    assert body["pump"]["gallons"]["confidence"] == 90.0
    assert body["pump"]["total"]["level"] == "medium"


def test_parse_requires_results(client):
    assert client.post("/parse", json={"results": []}).status_code == 400


def test_message(client, monkeypatch):
    monkeypatch.setattr(settings, "SMS_RECIPIENT", "5551234")
    r = client.post("/message", json={"miles": 168237, "price": 3.599, "gallons": 9.811})
    assert r.status_code == 200
    assert r.json() == {
        "body": "168237 3.599 9.811",
        "sms_url": "sms:5551234&body=168237%203.599%209.811",
    }


def test_message_rejects_missing_value(client):
    r = client.post("/message", json={"miles": 168237, "price": 3.599})
    assert r.status_code == 422
    assert "gallons" in r.json()["detail"]
