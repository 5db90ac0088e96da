"""
tests/test_api.py
=================
Control API Tests — FastAPI app and WebSocket audio ingest

Test categories:
    1. Call lifecycle endpoints: join / duplicate / leave / status / list
    2. Target language endpoint
    3. WebSocket framing helpers
    4. WebSocket ingest end to end: speech in, translated result out,
       socket close ends the session

All tests are offline: the translation service is a fake and results are
collected by a MemorySink.
"""

import os
import sys
import time
import unittest

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

# Ensure project root and tests/ are on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeTranslationService, tone
from voicerelay.api.control import create_app
from voicerelay.api.websocket import decode_frame, encode_frame
from voicerelay.config import RelaySettings
from voicerelay.errors import ConfigurationError
from voicerelay.session.sink import MemorySink


def _wait_until(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.service = FakeTranslationService()
        self.sink = MemorySink()
        settings = RelaySettings(silence_timeout_ms=5000, retry_delay_ms=0)
        self.app = create_app(settings, service=self.service, sink=self.sink)
        self.client = TestClient(self.app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def join(self, call_id: str = "call-1", **extra):
        body = {"call_id": call_id, "channel_id": "voice-1", "sink_id": "text-1"}
        body.update(extra)
        return self.client.post("/api/v1/calls", json=body)


# ===================================================================
# 1. CALL LIFECYCLE
# ===================================================================


class TestCallEndpoints(ApiTestCase):

    def test_join_returns_status(self):
        resp = self.join()

        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data["session_id"], "call-1")
        self.assertEqual(data["target_language"], "ja")
        self.assertEqual(data["target_language_name"], "Japanese (日本語)")
        self.assertEqual(data["active_speakers"], [])
        self.assertTrue(data["live"])

    def test_join_with_language(self):
        resp = self.join(target_language="es")
        self.assertEqual(resp.json()["target_language"], "es")

    def test_duplicate_join_conflict(self):
        self.join()
        resp = self.join()
        self.assertEqual(resp.status_code, 409)

    def test_join_validation(self):
        resp = self.client.post("/api/v1/calls", json={"call_id": "call-1"})
        self.assertEqual(resp.status_code, 422)

    def test_status_and_list(self):
        self.join("call-1")
        self.join("call-2")

        resp = self.client.get("/api/v1/calls/call-1")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["uptime"][-1], "s")

        listed = self.client.get("/api/v1/calls").json()
        self.assertEqual(sorted(item["session_id"] for item in listed), ["call-1", "call-2"])

    def test_unknown_call_status(self):
        self.assertEqual(self.client.get("/api/v1/calls/nope").status_code, 404)

    def test_leave_is_idempotent(self):
        self.join()
        self.assertEqual(self.client.delete("/api/v1/calls/call-1").status_code, 204)
        self.assertEqual(self.client.delete("/api/v1/calls/call-1").status_code, 204)
        self.assertEqual(self.client.get("/api/v1/calls/call-1").status_code, 404)

    def test_missing_api_key_fails_fast(self):
        with self.assertRaises(ConfigurationError):
            create_app(RelaySettings(openai_api_key=None))


# ===================================================================
# 2. TARGET LANGUAGE
# ===================================================================


class TestLanguageEndpoint(ApiTestCase):

    def test_change_language(self):
        self.join()
        resp = self.client.put("/api/v1/calls/call-1/language", json={"target_language": "fr"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.json(),
            {"call_id": "call-1", "target_language": "fr", "target_language_name": "French (Français)"},
        )
        status = self.client.get("/api/v1/calls/call-1").json()
        self.assertEqual(status["target_language"], "fr")
        self.assertEqual(status["target_language_name"], "French (Français)")

    def test_change_language_unknown_call(self):
        resp = self.client.put("/api/v1/calls/nope/language", json={"target_language": "fr"})
        self.assertEqual(resp.status_code, 404)

    def test_empty_language_rejected(self):
        self.join()
        resp = self.client.put("/api/v1/calls/call-1/language", json={"target_language": ""})
        self.assertEqual(resp.status_code, 422)

    def test_unsupported_language_rejected(self):
        self.join()
        resp = self.client.put("/api/v1/calls/call-1/language", json={"target_language": "xx"})

        self.assertEqual(resp.status_code, 422)
        self.assertEqual(self.client.get("/api/v1/calls/call-1").json()["target_language"], "ja")

    def test_join_with_unsupported_language_rejected(self):
        resp = self.join(target_language="klingon")

        self.assertEqual(resp.status_code, 422)
        self.assertEqual(self.client.get("/api/v1/calls/call-1").status_code, 404)


# ===================================================================
# 3. FRAMING
# ===================================================================


class TestFraming(unittest.TestCase):

    def test_encode_layout(self):
        message = encode_frame("ü1", b"\x01\x02")
        self.assertEqual(message[:2], b"\x00\x03")
        self.assertEqual(decode_frame(message), ("ü1", b"\x01\x02"))

    def test_header_only_frame(self):
        self.assertEqual(decode_frame(encode_frame("u1", b"")), ("u1", b""))

    def test_malformed_frames(self):
        for message in (b"", b"\x00", b"\x00\x00abc", b"\x00\x09u1"):
            with self.subTest(message=message):
                with self.assertRaises(ValueError):
                    decode_frame(message)


# ===================================================================
# 4. WEBSOCKET INGEST
# ===================================================================


class TestAudioSocket(ApiTestCase):

    def test_unknown_call_rejected(self):
        with self.assertRaises(WebSocketDisconnect):
            with self.client.websocket_connect("/api/v1/calls/nope/audio") as ws:
                ws.receive_text()

    def test_speech_is_translated_and_delivered(self):
        self.join(target_language="ja")

        with self.client.websocket_connect("/api/v1/calls/call-1/audio") as ws:
            ws.send_json({"type": "speaking", "speaker_id": "u1", "display_name": "Alice", "speaking": True})
            ws.send_bytes(b"\x00")  # malformed, skipped
            ws.send_bytes(encode_frame("u1", tone(960)))
            ws.send_bytes(encode_frame("u1", tone(960)))
            ws.send_text("not json")  # skipped
            ws.send_json({"type": "speaking", "speaker_id": "u1", "display_name": "Alice", "speaking": False})

            delivered = _wait_until(lambda: len(self.sink.all()) == 1)
            self.assertTrue(delivered)

        result = self.sink.results["text-1"][0]
        self.assertEqual(result.display_name, "Alice")
        self.assertEqual(result.target_language, "ja")
        self.assertEqual(len(self.service.calls[0].payload), 640 * 2)

    def test_socket_close_ends_session(self):
        self.join()

        with self.client.websocket_connect("/api/v1/calls/call-1/audio") as ws:
            ws.send_json({"type": "speaking", "speaker_id": "u1", "display_name": "Alice", "speaking": True})
            self.assertTrue(
                _wait_until(
                    lambda: self.client.get("/api/v1/calls/call-1").json()["active_speakers"] == ["u1"]
                )
            )

        self.assertTrue(
            _wait_until(lambda: self.client.get("/api/v1/calls/call-1").status_code == 404)
        )
        # The call can be joined again afterwards
        self.assertEqual(self.join().status_code, 201)


if __name__ == "__main__":
    unittest.main()
