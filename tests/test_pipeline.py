from __future__ import annotations

import pytest

from backroom.domain.models import InboundMessage
from backroom.ledger import InventoryLedger, TransactionLog
from backroom.nlu.intent import IntentParser
from backroom.pipeline import ActionExecutor, MessagePipeline, TranscriptionError
from backroom.pipeline.formatter import APOLOGY, HELP_MENU, TRANSCRIPTION_FAILED, VOICE_UNSUPPORTED

from conftest import FakeNlu


class RecordingExecutor:
    def __init__(self) -> None:
        self.calls = []

    def execute(self, intent, user_id):
        self.calls.append((intent, user_id))
        raise AssertionError("executor must not be called")


class FakeTranscriber:
    def __init__(self, text=None, error=None) -> None:
        self.text = text
        self.error = error

    def transcribe(self, audio, mime_type):
        if self.error:
            raise self.error
        return self.text


@pytest.mark.parametrize("text", ["", "   ", "HELP", " hi ", "Menu", "?", "Start"])
def test_empty_and_help_commands_short_circuit(text):
    nlu = FakeNlu({"action": "add", "confidence": 1.0})
    executor = RecordingExecutor()
    pipeline = MessagePipeline(IntentParser(nlu), executor)

    assert pipeline.process_text(text, "27821234567") == HELP_MENU
    assert nlu.calls == []
    assert executor.calls == []


def test_low_confidence_asks_for_clarification_without_touching_ledger(store):
    ledger = InventoryLedger(store, account="shop")
    log = TransactionLog(store, account="shop")
    nlu = FakeNlu({"action": "add", "items": [{"name": "coke", "quantity": 5}], "confidence": 0.3})
    pipeline = MessagePipeline(IntentParser(nlu), ActionExecutor(ledger, log))

    reply = pipeline.process_text("maybe some coke", "u1")

    assert '"maybe some coke"' in reply
    assert ledger.list_all() == []
    assert log.history() == []


def test_end_to_end_sold_solar_panels(executor: ActionExecutor, ledger: InventoryLedger):
    ledger.upsert_add("solar panels", 23, "pieces", "seed")
    nlu = FakeNlu(
        {
            "action": "remove",
            "items": [{"name": "solar panels", "quantity": 3, "unit": "pieces"}],
            "confidence": 0.95,
        }
    )
    pipeline = MessagePipeline(IntentParser(nlu), executor)

    reply = pipeline.process_text("Sold 3 solar panels", "whatsapp:+27821234567")

    assert "Removed" in reply and "3" in reply and "solar panels" in reply
    item = ledger.find("solar panels")
    assert item.quantity == 20.0
    assert item.updated_by == "27821234567"


def test_offline_pipeline_uses_regex_parser(offline_pipeline: MessagePipeline, ledger: InventoryLedger):
    reply = offline_pipeline.process_text("Added 10 boxes of nails", "u1")

    assert "Added" in reply
    assert ledger.find("nails").unit == "boxes"


def test_degraded_model_with_unparseable_text_asks_for_clarification(executor, nlu_error):
    pipeline = MessagePipeline(IntentParser(FakeNlu(error=nlu_error)), executor)
    reply = pipeline.process_text("the usual please", "u1")
    assert "not quite sure" in reply


def test_unexpected_errors_become_an_apology(store):
    class ExplodingExecutor:
        def execute(self, intent, user_id):
            raise RuntimeError("database exploded")

    pipeline = MessagePipeline(IntentParser(None), ExplodingExecutor())
    reply = pipeline.handle(InboundMessage(sender="u1", text="Sold 2 cables"))

    assert reply.success is False
    assert reply.message == APOLOGY


def test_voice_note_is_transcribed_then_processed(executor: ActionExecutor, ledger: InventoryLedger):
    pipeline = MessagePipeline(IntentParser(None), executor, transcriber=FakeTranscriber("Got 5 bags of cement"))

    reply = pipeline.handle(InboundMessage(sender="u1", is_voice=True, audio=b"OggS...", audio_mime_type="audio/ogg"))

    assert reply.success
    assert ledger.find("cement").quantity == 5.0


def test_voice_failures_short_circuit_before_parsing(executor: ActionExecutor):
    nlu = FakeNlu({"action": "list", "confidence": 1.0})
    failing = MessagePipeline(
        IntentParser(nlu), executor, transcriber=FakeTranscriber(error=TranscriptionError("garbled"))
    )
    voice = InboundMessage(sender="u1", is_voice=True, audio=b"OggS...")

    assert failing.handle(voice).message == TRANSCRIPTION_FAILED
    assert MessagePipeline(IntentParser(nlu), executor).handle(voice).message == VOICE_UNSUPPORTED
    assert nlu.calls == []
