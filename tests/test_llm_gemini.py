import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from mangarec.config import clear_settings_cache
from mangarec.errors import (
    ExternalServiceError,
    GenerationCancelledError,
    InferenceNotConfiguredError,
    InferenceTimeoutError,
    MalformedResponseError,
)
from mangarec.schemas import UserProfile
from mangarec.services.llm_gemini import GeminiClient
from mangarec.services.sources.base import CandidateItem

CANDIDATES = [
    CandidateItem(id="m1", title="Blade Garden", genres=["Action"], description="d" * 300),
    CandidateItem(id="m2", title="Quiet Tea", genres=["Slice of Life"]),
]


def _gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler):
    return GeminiClient(client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_recommend_posts_prompt_and_returns_text(gemini_key):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json=_gemini_body('[{"id": "m1"}]'))

    profile = UserProfile(genres=["Action"], avoid_genres=["Horror"])
    text = _client(handler).recommend(profile, CANDIDATES)

    assert text == '[{"id": "m1"}]'
    assert ":generateContent" in seen["url"]
    assert "key=test-key" in seen["url"]
    prompt = seen["payload"]["contents"][0]["parts"][0]["text"]
    assert "Favorite Genres: Action" in prompt
    assert "Genres to Avoid: Horror" in prompt
    assert '"id": "m1"' in prompt
    assert "d" * 150 + "..." in prompt
    assert "d" * 151 not in prompt
    assert "No description available" in prompt


def test_prompt_omits_avoid_line_when_empty(gemini_key):
    prompt = GeminiClient(client=httpx.Client()).build_prompt(UserProfile(), CANDIDATES)
    assert "Genres to Avoid" not in prompt
    assert "exactly 5 recommendations" in prompt


def test_error_status_carries_upstream_message(gemini_key):
    def handler(request):
        return httpx.Response(403, json={"error": {"code": 403, "message": "API key not valid"}})

    with pytest.raises(ExternalServiceError) as exc:
        _client(handler).recommend(UserProfile(), CANDIDATES)
    assert exc.value.status_code == 403
    assert exc.value.upstream_message == "API key not valid"


def test_error_status_with_unparseable_body_uses_raw_text(gemini_key):
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(ExternalServiceError) as exc:
        _client(handler).recommend(UserProfile(), CANDIDATES)
    assert exc.value.upstream_message == "Bad Gateway"


def test_transport_timeout_raises_timeout_error(gemini_key):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(InferenceTimeoutError) as exc:
        _client(handler).recommend(UserProfile(), CANDIDATES)
    assert isinstance(exc.value, TimeoutError)


def test_slow_stream_exceeds_total_deadline(gemini_key, monkeypatch):
    monkeypatch.setenv("MANGAREC_INFERENCE_TIMEOUT", "0.05")
    clear_settings_cache()

    def slow_chunks():
        yield b'{"candidates": '
        time.sleep(0.1)
        yield b"[]}"

    def handler(request):
        return httpx.Response(200, content=slow_chunks())

    with pytest.raises(InferenceTimeoutError):
        _client(handler).recommend(UserProfile(), CANDIDATES)


def test_cancel_event_stops_the_call(gemini_key):
    cancel = threading.Event()

    def chunks():
        yield b'{"candidates": '
        cancel.set()
        yield b"[]}"

    def handler(request):
        return httpx.Response(200, content=chunks())

    with pytest.raises(GenerationCancelledError):
        _client(handler).recommend(UserProfile(), CANDIDATES, cancel_event=cancel)


def test_missing_api_key_is_reported():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(InferenceNotConfiguredError):
        _client(handler).recommend(UserProfile(), CANDIDATES)


def test_reply_without_text_part_is_malformed(gemini_key):
    def handler(request):
        return httpx.Response(200, json={"candidates": []})

    with pytest.raises(MalformedResponseError):
        _client(handler).recommend(UserProfile(), CANDIDATES)


class SlowGeminiHandler(BaseHTTPRequestHandler):
    header_delay = 0.0
    chunk_delay = 0.0

    def do_POST(self):
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        body = json.dumps(_gemini_body('[{"id": "m1"}]')).encode("utf-8")
        time.sleep(self.header_delay)
        try:
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            middle = len(body) // 2
            for part in (body[:middle], body[middle:]):
                time.sleep(self.chunk_delay)
                self.wfile.write(part)
                self.wfile.flush()
        except OSError:
            # The client stopped listening.
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture
def slow_server(gemini_key, monkeypatch):
    servers = []

    def _start(header_delay=0.0, chunk_delay=0.0, inference_timeout=None):
        handler = type(
            "Handler",
            (SlowGeminiHandler,),
            {"header_delay": header_delay, "chunk_delay": chunk_delay},
        )
        server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
        server.daemon_threads = True
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        monkeypatch.setenv("MANGAREC_GEMINI_BASE_URL", f"http://127.0.0.1:{server.server_address[1]}")
        if inference_timeout is not None:
            monkeypatch.setenv("MANGAREC_INFERENCE_TIMEOUT", str(inference_timeout))
        clear_settings_cache()
        return GeminiClient(client=httpx.Client(trust_env=False))

    yield _start
    for server in servers:
        server.shutdown()
        server.server_close()


def test_local_server_reply_is_returned(slow_server):
    client = slow_server()
    assert client.recommend(UserProfile(), CANDIDATES) == '[{"id": "m1"}]'


def test_late_headers_and_trickled_body_stay_within_total_deadline(slow_server):
    client = slow_server(header_delay=0.4, chunk_delay=0.4, inference_timeout=0.5)

    started = time.monotonic()
    with pytest.raises(InferenceTimeoutError):
        client.recommend(UserProfile(), CANDIDATES)
    elapsed = time.monotonic() - started

    assert elapsed < 0.8


def test_cancel_while_waiting_for_headers_returns_promptly(slow_server):
    client = slow_server(header_delay=1.5)
    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    timer.start()

    started = time.monotonic()
    try:
        with pytest.raises(GenerationCancelledError):
            client.recommend(UserProfile(), CANDIDATES, cancel_event=cancel)
    finally:
        timer.cancel()
    elapsed = time.monotonic() - started

    assert elapsed < 0.6
