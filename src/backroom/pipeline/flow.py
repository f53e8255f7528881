"""
Message pipeline: inbound text or voice note -> reply text.

Steps, in order:
  1. voice note -> transcript (failure ends with a fixed reply)
  2. empty text or a help command -> help menu, no parsing
  3. parse -> confidence gate (low confidence asks for clarification)
  4. execute -> format

Nothing raised inside escapes `handle`; callers always get a reply.
"""

from __future__ import annotations

from typing import Optional

from ..domain.models import Action, ActionResult, InboundMessage, PipelineReply
from ..domain.normalize import format_phone_number
from ..logging import get_logger
from ..nlu.intent import IntentParser
from .executor import ActionExecutor
from .formatter import (
    APOLOGY,
    TRANSCRIPTION_FAILED,
    VOICE_UNSUPPORTED,
    clarification_message,
    format_response,
)
from .transcribe import Transcriber, TranscriptionError


LOG = get_logger("pipeline")

HELP_COMMANDS = frozenset({"help", "hi", "hello", "hey", "start", "?", "menu"})


def is_help_command(text: str) -> bool:
    return text.strip().lower() in HELP_COMMANDS


class MessagePipeline:
    def __init__(
        self,
        parser: IntentParser,
        executor: ActionExecutor,
        *,
        transcriber: Optional[Transcriber] = None,
        confidence_threshold: float = 0.5,
    ) -> None:
        self.parser = parser
        self.executor = executor
        self.transcriber = transcriber
        self.confidence_threshold = confidence_threshold

    def handle(self, inbound: InboundMessage) -> PipelineReply:
        user_id = format_phone_number(inbound.sender) or inbound.sender
        LOG.info(
            "Processing message from %s (voice=%s, %d chars)",
            user_id, inbound.is_voice, len(inbound.text or ""),
        )
        try:
            text = inbound.text or ""
            if inbound.is_voice:
                transcript = self._transcribe(inbound)
                if isinstance(transcript, PipelineReply):
                    return transcript
                text = transcript
            return self._process(text, user_id)
        except Exception:
            LOG.exception("Error processing message from %s", user_id)
            return PipelineReply(success=False, message=APOLOGY)

    def process_text(self, text: str, user_id: str) -> str:
        return self.handle(InboundMessage(sender=user_id, text=text)).message

    def _transcribe(self, inbound: InboundMessage):
        if self.transcriber is None:
            LOG.warning("Voice note received but transcription is disabled")
            return PipelineReply(success=False, message=VOICE_UNSUPPORTED)
        if not inbound.audio:
            LOG.warning("Voice note %s arrived without audio bytes", inbound.audio_id)
            return PipelineReply(success=False, message=TRANSCRIPTION_FAILED)
        try:
            transcript = self.transcriber.transcribe(inbound.audio, inbound.audio_mime_type or "audio/ogg")
        except TranscriptionError as exc:
            LOG.warning("Could not transcribe voice note %s: %s", inbound.audio_id, exc)
            return PipelineReply(success=False, message=TRANSCRIPTION_FAILED)
        if not transcript or not transcript.strip():
            return PipelineReply(success=False, message=TRANSCRIPTION_FAILED)
        return transcript

    def _process(self, text: str, user_id: str) -> PipelineReply:
        if not text.strip() or is_help_command(text):
            return PipelineReply(success=True, message=format_response(ActionResult(action=Action.HELP, success=True)))

        parsed = self.parser.parse(text)
        LOG.info("Parsed message: action=%s confidence=%.2f source=%s", parsed.action.value, parsed.confidence, parsed.source)

        if parsed.confidence < self.confidence_threshold and parsed.action is not Action.HELP:
            return PipelineReply(success=True, message=clarification_message(text))

        result = self.executor.execute(parsed, user_id)
        LOG.info("Action %s executed: success=%s", result.action.value, result.success)
        return PipelineReply(success=result.success, message=format_response(result))
