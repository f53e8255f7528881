from typing import Any, Dict, Optional, Tuple

import requests

from ..domain.models import InboundMessage
from ..domain.normalize import format_phone_number
from ..logging import get_logger


GRAPH_BASE_URL = "https://graph.facebook.com"


class WhatsAppError(Exception):
    pass


class WhatsAppClient:
    """Thin client for the WhatsApp Cloud API (Meta Graph) with session and timeouts.

    Only implements what the bot needs: text replies, read receipts and
    voice-note downloads. Sends are never retried; a failed delivery is
    logged and reported as False.
    """

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        *,
        api_version: str = "v18.0",
        timeout: int = 15,
        base_url: str = GRAPH_BASE_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not phone_number_id or not access_token:
            raise WhatsAppError("WhatsApp Cloud API is not configured")
        self.phone_number_id = phone_number_id
        self.base = f"{base_url.rstrip('/')}/{api_version}"
        self.timeout = int(timeout)
        self.log = get_logger("whatsapp")
        self.s = session or requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        })

    # ---------- helpers ----------
    def _messages_url(self) -> str:
        return f"{self.base}/{self.phone_number_id}/messages"

    def _post_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        r = self.s.post(self._messages_url(), json=payload, timeout=self.timeout)
        if r.status_code >= 400:
            raise WhatsAppError(f"HTTP {r.status_code}: {r.text[:300]}")
        try:
            return r.json()
        except ValueError:
            return {}

    @staticmethod
    def _text_payload(to: str, body: str) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": format_phone_number(to),
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }

    # ---------- messages ----------
    def send_message(self, to: str, body: str) -> bool:
        try:
            data = self._post_message(self._text_payload(to, body))
        except (requests.RequestException, WhatsAppError) as e:
            self.log.error(f"Failed to send WhatsApp message to {to}: {e}")
            return False
        self.log.info(f"Message sent to {to}: id={_first_message_id(data)}")
        return True

    def send_reply(self, to: str, body: str, message_id: Optional[str]) -> bool:
        """Reply threaded to the inbound message, marking it as read first."""
        if not message_id:
            return self.send_message(to, body)
        self.mark_as_read(message_id)
        payload = self._text_payload(to, body)
        payload["context"] = {"message_id": message_id}
        try:
            data = self._post_message(payload)
        except (requests.RequestException, WhatsAppError) as e:
            self.log.error(f"Failed to send WhatsApp reply to {to}: {e}")
            return False
        self.log.info(f"Reply sent to {to}: id={_first_message_id(data)}")
        return True

    def mark_as_read(self, message_id: str) -> None:
        payload = {"messaging_product": "whatsapp", "status": "read", "message_id": message_id}
        try:
            self._post_message(payload)
        except (requests.RequestException, WhatsAppError) as e:
            # Non-critical
            self.log.debug(f"Failed to mark {message_id} as read: {e}")

    # ---------- media ----------
    def download_media(self, media_id: str) -> Tuple[bytes, Optional[str]]:
        """Resolve a media id to its URL, then fetch the bytes. Raises WhatsAppError."""
        try:
            r = self.s.get(f"{self.base}/{media_id}", timeout=self.timeout)
            r.raise_for_status()
            meta = r.json()
            url = meta.get("url")
            if not url:
                raise WhatsAppError(f"no download URL for media {media_id}")
            f = self.s.get(url, timeout=self.timeout)
            f.raise_for_status()
        except (requests.RequestException, ValueError) as e:
            self.log.error(f"Failed to download media {media_id}: {e}")
            raise WhatsAppError(str(e)) from e
        mime = meta.get("mime_type") or f.headers.get("Content-Type")
        self.log.info(f"Media downloaded: id={media_id}, size={len(f.content)}")
        return f.content, mime

    def close(self) -> None:
        self.s.close()


def _first_message_id(data: Dict[str, Any]) -> Optional[str]:
    messages = data.get("messages") if isinstance(data, dict) else None
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        return messages[0].get("id")
    return None


def extract_message_data(body: Any) -> Optional[InboundMessage]:
    """Pull the first message out of a Meta webhook envelope.

    Returns None for status callbacks, other event kinds and malformed bodies.
    """
    try:
        value = body["entry"][0]["changes"][0]["value"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(value, dict):
        return None
    messages = value.get("messages")
    if not isinstance(messages, list) or not messages or not isinstance(messages[0], dict):
        return None

    message = messages[0]
    sender = message.get("from")
    if not sender:
        return None

    contacts = value.get("contacts") or []
    contact_name = None
    if contacts and isinstance(contacts[0], dict):
        contact_name = (contacts[0].get("profile") or {}).get("name") or None

    text = ""
    if isinstance(message.get("text"), dict):
        text = message["text"].get("body") or ""

    audio = message.get("audio") if isinstance(message.get("audio"), dict) else None
    return InboundMessage(
        sender=str(sender),
        text=text,
        message_id=message.get("id"),
        is_voice=message.get("type") == "audio" and audio is not None,
        audio_id=audio.get("id") if audio else None,
        audio_mime_type=audio.get("mime_type") if audio else None,
        contact_name=contact_name,
    )
