import os
import sys
from types import SimpleNamespace

import pytest
import requests
from fastapi.testclient import TestClient

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from acedata.client import AceDataSunoClient
from acedata_web import CORS_HEADERS, create_app
from core.settings import Settings

BASE = "https://upstream.test/suno"

ROUTES = [
    "/generate",
    "/custom_generate",
    "/custom_generate_task",
    "/generate_task",
    "/generate_lyrics",
    "/extend_audio",
    "/get_task",
    "/get_remote_config",
    "/task_callback",
]


def _settings(**overrides) -> Settings:
    params = {
        "_env_file": None,
        "ACEDATA_TOKEN": "test-token",
        "ACEDATA_API_BASE": BASE,
        "PUBLIC_BASE_URL": "https://proxy.test/",
        "IMPLEMENTATION_TYPE": "acedata",
        "LOG_JSON": False,
    }
    params.update(overrides)
    return Settings(**params)


def _audio(**overrides) -> dict:
    audio = {
        "id": "audio-1",
        "title": "Rain",
        "lyric": "Line one\n\nLine two",
        "created_at": "2024-06-01T10:00:00.000Z",
        "model": "chirp-v3-5",
        "state": "succeeded",
        "style": "sad ballad",
    }
    audio.update(overrides)
    return audio


@pytest.fixture
def settings() -> Settings:
    return _settings()


@pytest.fixture
def client(settings) -> TestClient:
    app = create_app(settings=settings, client=AceDataSunoClient.from_settings(settings))
    return TestClient(app)


def _exploding_client() -> SimpleNamespace:
    def _boom(*_args, **_kwargs):
        raise AssertionError("upstream must not be called")

    return SimpleNamespace(
        generate=_boom,
        custom_generate=_boom,
        custom_generate_task=_boom,
        generate_task=_boom,
        generate_lyrics=_boom,
        extend_audio=_boom,
        get_task=_boom,
    )


@pytest.mark.parametrize("path", ROUTES)
def test_options_returns_cors_headers_without_upstream(path):
    app = create_app(settings=_settings(), client=_exploding_client())
    response = TestClient(app).options(path)

    assert response.status_code == 200
    for key, value in CORS_HEADERS.items():
        assert response.headers[key] == value


def test_wrong_method_returns_405_with_allow_header(client):
    response = client.get("/custom_generate")

    assert response.status_code == 405
    assert response.headers["allow"] == "POST"
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.json() == {"error": "Method Not Allowed"}


@pytest.mark.parametrize("query", ["", "?id=", "?id=%20"])
def test_get_task_without_id_is_400_before_upstream(client, requests_mock, query):
    response = client.get(f"/get_task{query}")

    assert response.status_code == 400
    assert response.json() == {"error": "Missing parameter id"}
    assert requests_mock.call_count == 0


def test_custom_generate_success_returns_records(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", json={"task_id": "task-1", "data": [_audio()]})

    response = client.post(
        "/custom_generate",
        json={"prompt": "my lyrics", "tags": "sad ballad", "title": "Rain", "make_instrumental": False},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    body = response.json()
    assert body[0]["id"] == "audio-1"
    assert body[0]["tags"] == "sad ballad"
    assert body[0]["status"] == "succeeded"
    assert body[0]["lyric"] == "Line one\nLine two"
    assert body[0]["task_id"] == "task-1"
    sent = requests_mock.last_request.json()
    assert sent["custom"] is True
    assert sent["model"] == "chirp-v3-5"


def test_custom_generate_maps_402_to_402(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", status_code=402, reason="Payment Required", json={})

    response = client.post("/custom_generate", json={"prompt": "x", "tags": "pop", "title": "t"})

    assert response.status_code == 402
    assert response.json() == {"error": "Error response: Payment Required"}


def test_custom_generate_maps_other_errors_to_500(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", status_code=503, reason="Service Unavailable", json={})

    response = client.post("/custom_generate", json={"prompt": "x", "tags": "pop", "title": "t"})

    assert response.status_code == 500
    assert response.json() == {"error": "Error response: Service Unavailable"}


def test_custom_generate_treats_null_instrumental_as_false(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", json={"task_id": "task-1", "data": [_audio()]})

    response = client.post(
        "/custom_generate",
        json={"prompt": "p", "tags": "x", "title": "y", "make_instrumental": None},
    )

    assert response.status_code == 200
    assert requests_mock.last_request.json()["instrumental"] is False


def test_custom_generate_task_returns_task_id(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", json={"task_id": "task-7"})

    response = client.post("/custom_generate_task", json={"prompt": "x", "tags": "pop", "title": "t"})

    assert response.status_code == 200
    assert response.json() == {"task_id": "task-7"}
    assert requests_mock.last_request.json()["custom"] is True


def test_custom_generate_task_reports_failures_as_402(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", status_code=500, reason="Internal Server Error", json={})

    response = client.post("/custom_generate_task", json={"prompt": "x", "tags": "pop", "title": "t"})

    assert response.status_code == 402
    assert "Internal Server Error" in response.json()["error"]


def test_get_task_pending_with_null_data(client, requests_mock):
    requests_mock.post(
        f"{BASE}/tasks",
        json={"response": {"task_id": "t1", "success": False, "data": None}},
    )

    response = client.get("/get_task?id=t1")

    assert response.status_code == 200
    assert response.json() == {"task_id": "t1", "success": False, "audios": []}


def test_route_failures_log_traceback(client, requests_mock, caplog):
    requests_mock.post(f"{BASE}/audios", exc=requests.exceptions.ConnectionError("refused"))

    with caplog.at_level("ERROR", logger="acedata-web"):
        client.post("/generate", json={"prompt": "x"})

    records = [rec for rec in caplog.records if rec.getMessage().startswith("generate failed")]
    assert records
    assert records[-1].exc_info is not None
    assert records[-1].exc_info[0] is requests.exceptions.ConnectionError


def test_import_does_not_build_an_app():
    import acedata_web

    assert not hasattr(acedata_web, "app")


def test_generate_task_then_get_task(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", json={"task_id": "task-42"})
    requests_mock.post(
        f"{BASE}/tasks",
        json={"response": {"task_id": "task-42", "success": True, "data": [_audio()]}},
    )

    submitted = client.post(
        "/generate_task", json={"prompt": "sad ballad about rain", "make_instrumental": False}
    )
    assert submitted.status_code == 200
    assert submitted.json() == {"task_id": "task-42"}
    first_call = requests_mock.request_history[0].json()
    assert first_call["callback_url"] == "https://proxy.test/task_callback"
    assert first_call["custom"] is False

    polled = client.get("/get_task", params={"id": "task-42"})
    assert polled.status_code == 200
    task = polled.json()
    assert task["task_id"] == "task-42"
    assert task["success"] is True
    assert task["audios"][0]["task_id"] == "task-42"


def test_generate_task_network_error_is_500(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", exc=requests.exceptions.ConnectionError("refused"))

    response = client.post("/generate_task", json={"prompt": "x"})

    assert response.status_code == 500
    assert response.json()["error"].startswith("Internal server error: ")


def test_generate_task_without_public_url_is_500():
    settings = _settings(PUBLIC_BASE_URL=None)
    app = create_app(settings=settings, client=AceDataSunoClient.from_settings(settings))

    response = TestClient(app).post("/generate_task", json={"prompt": "x"})

    assert response.status_code == 500
    assert "PUBLIC_BASE_URL" in response.json()["error"]


def test_get_task_upstream_error_is_500(client, requests_mock):
    requests_mock.post(f"{BASE}/tasks", status_code=402, reason="Payment Required", json={})

    response = client.get("/get_task?id=abc")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error: Error response: Payment Required"}


def test_generate_lyrics_success_and_quota(client, requests_mock):
    requests_mock.post(
        f"{BASE}/lyrics",
        [
            {"json": {"data": {"title": "Rain", "text": "drops"}}},
            {"status_code": 402, "reason": "Payment Required", "json": {}},
        ],
    )

    ok = client.post("/generate_lyrics", json={"prompt": "rain"})
    assert ok.status_code == 200
    assert ok.json() == {"title": "Rain", "text": "drops"}

    quota = client.post("/generate_lyrics", json={"prompt": "rain"})
    assert quota.status_code == 402
    assert quota.json() == {"error": "Error response: Payment Required"}


def test_generate_lyrics_contract_violation_is_500(client, requests_mock):
    requests_mock.post(f"{BASE}/lyrics", json={"data": {"title": "no text"}})

    response = client.post("/generate_lyrics", json={"prompt": "rain"})

    assert response.status_code == 500
    assert response.json()["error"].startswith("Internal server error: Unexpected AceData response")


def test_generate_and_extend_audio(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", json={"task_id": "g-1", "data": [_audio(id="g")]})
    requests_mock.post(f"{BASE}/lyrics", json={"task_id": "e-1", "data": [_audio(id="e")]})

    generated = client.post("/generate", json={"prompt": "sea shanty", "make_instrumental": True})
    assert generated.status_code == 200
    assert generated.json()[0]["id"] == "g"

    extended = client.post("/extend_audio", json={"audio_id": "g", "continue_at": "00:45"})
    assert extended.status_code == 200
    assert extended.json()["id"] == "e"
    sent = requests_mock.last_request.json()
    assert sent["action"] == "extend"
    assert sent["audio_id"] == "g"
    assert sent["continue_at"] == "00:45"


def test_missing_prompt_is_400(client, requests_mock):
    response = client.post("/generate_task", json={"make_instrumental": True})

    assert response.status_code == 400
    assert "prompt" in response.json()["error"]
    assert requests_mock.call_count == 0


def test_invalid_json_body_is_400(client, requests_mock):
    response = client.post(
        "/custom_generate",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert requests_mock.call_count == 0


def test_get_remote_config_echoes_implementation():
    app = create_app(settings=_settings(IMPLEMENTATION_TYPE="acedata"), client=_exploding_client())

    response = TestClient(app).get("/get_remote_config")

    assert response.status_code == 200
    assert response.json() == {"implementation": "acedata"}


def test_task_callback_accepts_upstream_envelope(client, caplog):
    body = {"task_id": "task-9", "success": True, "data": [_audio()]}

    with caplog.at_level("INFO", logger="acedata-web"):
        response = client.post("/task_callback", json=body)

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    records = [rec for rec in caplog.records if rec.getMessage() == "task callback"]
    assert records, "callback summary log not found"
    meta = records[-1].__dict__.get("meta")
    assert meta["task_id"] == "task-9"
    assert meta["items"] == 1


def test_task_callback_rejects_invalid_payload(client):
    assert client.post("/task_callback", content=b"nope").status_code == 400
    assert client.post("/task_callback", json=[1, 2]).status_code == 400
    assert client.post("/task_callback", json={"data": [{"title": "no id"}]}).status_code == 400


def test_healthz_and_metrics(client, requests_mock):
    requests_mock.post(f"{BASE}/audios", json={"task_id": "task-1", "data": [_audio()]})
    client.post("/generate", json={"prompt": "x"})

    health = client.get("/healthz")
    assert health.json() == {"ok": True, "upstream": BASE, "callback_configured": True}

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    text = metrics.text
    assert "api_responses_total" in text
    assert "acedata_requests_total" in text
    assert 'route="generate"' in text
