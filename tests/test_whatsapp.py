from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
import requests

from backroom.channels.whatsapp import WhatsAppClient, WhatsAppError, extract_message_data


def _envelope(message: Dict[str, Any], *, contacts=None) -> Dict[str, Any]:
    value: Dict[str, Any] = {"metadata": {"phone_number_id": "111"}, "messages": [message]}
    if contacts is not None:
        value["contacts"] = contacts
    return {"object": "whatsapp_business_account", "entry": [{"changes": [{"value": value}]}]}


class _Response:
    def __init__(self, status_code: int = 200, payload: Optional[Dict[str, Any]] = None, content: bytes = b"",
                 headers: Optional[Dict[str, str]] = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.headers = headers or {}
        self.text = str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    def __init__(self, responses: List[_Response]) -> None:
        self.headers: Dict[str, str] = {}
        self.responses = list(responses)
        self.calls: List[tuple] = []

    def post(self, url, json=None, timeout=None):
        self.calls.append(("POST", url, json))
        return self.responses.pop(0)

    def get(self, url, timeout=None):
        self.calls.append(("GET", url, None))
        return self.responses.pop(0)

    def close(self):
        pass


def test_extract_text_message():
    body = _envelope(
        {"from": "27821234567", "id": "wamid.1", "type": "text", "text": {"body": "Sold 3 solar panels"}},
        contacts=[{"profile": {"name": "Thandi"}}],
    )
    msg = extract_message_data(body)

    assert msg.sender == "27821234567"
    assert msg.text == "Sold 3 solar panels"
    assert msg.message_id == "wamid.1"
    assert msg.contact_name == "Thandi"
    assert msg.is_voice is False


def test_extract_voice_message():
    body = _envelope(
        {"from": "2782", "id": "wamid.2", "type": "audio",
         "audio": {"id": "media-9", "mime_type": "audio/ogg; codecs=opus", "voice": True}}
    )
    msg = extract_message_data(body)

    assert msg.is_voice is True
    assert msg.audio_id == "media-9"
    assert msg.audio_mime_type.startswith("audio/ogg")
    assert msg.text == ""


@pytest.mark.parametrize(
    "body",
    [
        {},
        None,
        {"entry": []},
        {"entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.1", "status": "read"}]}}]}]},
        {"entry": [{"changes": [{"value": {"messages": [{"id": "x"}]}}]}]},
    ],
)
def test_extract_ignores_non_messages(body):
    assert extract_message_data(body) is None


def test_client_requires_configuration():
    with pytest.raises(WhatsAppError):
        WhatsAppClient("", "token")


def test_send_reply_marks_read_and_threads_context():
    session = FakeSession([_Response(200, {"success": True}), _Response(200, {"messages": [{"id": "wamid.out"}]})])
    client = WhatsAppClient("111", "secret", session=session)

    assert client.send_reply("+27 82 123 4567", "hello", "wamid.in") is True

    read_call, reply_call = session.calls
    assert read_call[2] == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.in"}
    assert reply_call[1].endswith("/v18.0/111/messages")
    assert reply_call[2]["to"] == "27821234567"
    assert reply_call[2]["context"] == {"message_id": "wamid.in"}
    assert session.headers["Authorization"] == "Bearer secret"


def test_send_failure_returns_false():
    session = FakeSession([_Response(400, {"error": {"message": "bad"}})])
    client = WhatsAppClient("111", "secret", session=session)
    assert client.send_message("2782", "hello") is False


def test_download_media_resolves_url_then_fetches_bytes():
    session = FakeSession(
        [
            _Response(200, {"url": "https://lookaside.example/media", "mime_type": "audio/ogg"}),
            _Response(200, None, content=b"OggS-bytes"),
        ]
    )
    client = WhatsAppClient("111", "secret", session=session)

    data, mime = client.download_media("media-9")

    assert data == b"OggS-bytes"
    assert mime == "audio/ogg"
    assert session.calls[1][1] == "https://lookaside.example/media"


def test_download_media_errors_raise():
    client = WhatsAppClient("111", "secret", session=FakeSession([_Response(404, {"error": "gone"})]))
    with pytest.raises(WhatsAppError):
        client.download_media("media-9")
