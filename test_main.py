import pytest
from fastapi.testclient import TestClient

import main
import state


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "DATA_DIR", str(tmp_path))
    monkeypatch.setattr(main, "_frames", {"processed": 0, "dropped": 0, "invalid": 0})
    main.store.reset()
    with TestClient(main.app) as c:
        yield c
    main.store.reset()


def _post_frame(client, frame, **extra):
    data = {"width": str(frame.width), "height": str(frame.height)}
    data.update(extra)
    return client.post(
        "/api/measure",
        files={"frame": ("frame.rgba", frame.data, "application/octet-stream")},
        data=data,
    )


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["calibrated"] is False
    assert body["filters"] == 0


def test_measure_square(client, square_frame):
    r = _post_frame(client, square_frame)

    assert r.status_code == 200
    body = r.json()
    assert body["detected"]["id"] == "obj_0"
    assert abs(body["detected"]["bbox"]["w"] - 102) <= 2
    assert "points" not in body["detected"]
    assert body["measurement"]["unit"] == "px"
    assert 0.1 <= body["measurement"]["confidence"] <= 0.99
    assert client.get("/api/stats").json()["processed"] == 1


def test_measure_with_points(client, square_frame):
    body = _post_frame(client, square_frame, include_points="true").json()
    assert len(body["detected"]["points"]) == body["detected"]["perimeter_px"]


def test_measure_blank_frame(client, blank_frame):
    r = _post_frame(client, blank_frame)
    assert r.status_code == 200
    assert r.json() == {"detected": None, "measurement": None}


def test_size_mismatch_is_rejected(client, square_frame):
    r = client.post(
        "/api/measure",
        files={"frame": ("frame.rgba", square_frame.data, "application/octet-stream")},
        data={"width": "100", "height": "240"},
    )
    assert r.status_code == 400
    assert client.get("/api/stats").json()["invalid"] == 1


def test_busy_frame_is_dropped(client, square_frame, monkeypatch):
    class Busy:
        def locked(self):
            return True

    monkeypatch.setattr(main, "_frame_lock", Busy())

    r = _post_frame(client, square_frame)

    assert r.status_code == 429
    assert r.json() == {"dropped": True}
    assert main._frames["dropped"] == 1


def test_calibration_round_trip(client):
    assert client.get("/api/calibration").json()["is_calibrated"] is False

    r = client.put("/api/calibration", json={"pixels_per_mm": 4.0})

    assert r.status_code == 200
    assert r.json()["is_calibrated"] is True
    assert client.get("/api/calibration").json()["pixels_per_mm"] == 4.0
    assert state.load_calibration().pixels_per_mm == 4.0


def test_calibrated_measurement_in_mm(client, square_frame):
    client.put("/api/calibration", json={"pixels_per_mm": 4.0})
    body = _post_frame(client, square_frame).json()
    assert body["measurement"]["unit"] == "mm"
    assert abs(body["measurement"]["width"] - 25.5) <= 0.5


@pytest.mark.parametrize("ppm", [0, -1])
def test_calibration_requires_positive_scale(client, ppm):
    r = client.put("/api/calibration", json={"pixels_per_mm": ppm})
    assert r.status_code == 422


def test_filters_reset(client, square_frame):
    _post_frame(client, square_frame)
    assert client.get("/api/filters").json()["filters"] >= 2

    r = client.post("/api/filters/reset")

    assert r.status_code == 200
    assert r.json()["cleared"] >= 2
    assert client.get("/api/filters").json()["filters"] == 0
