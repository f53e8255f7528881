import os
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .channels.whatsapp import WhatsAppClient, WhatsAppError
from .config import Settings
from .ledger.base import InventoryStore, StorageError
from .ledger.ledger import InventoryLedger
from .ledger.sheets import GoogleSheetsValuesClient, SheetsInventoryStore
from .ledger.sqlite import SqliteInventoryStore
from .ledger.transactions import TransactionLog
from .logging import get_logger
from .nlu.client import NluClient, NluConfig, NluError
from .nlu.intent import IntentParser
from .pipeline.executor import ActionExecutor
from .pipeline.flow import MessagePipeline
from .pipeline.transcribe import TranscriptionError, WhisperTranscriber

log = get_logger("services")


@dataclass
class Services:
    """The wired object graph, built once per process."""

    settings: Settings
    store: InventoryStore
    ledger: InventoryLedger
    transactions: TransactionLog
    parser: IntentParser
    executor: ActionExecutor
    pipeline: MessagePipeline
    whatsapp: Optional[WhatsAppClient] = None
    _closables: List[Any] = field(default_factory=list)

    def close(self) -> None:
        for obj in self._closables:
            try:
                obj.close()
            except Exception as e:
                log.debug(f"Ignoring close error on {type(obj).__name__}: {e}")


def build_store(settings: Settings) -> InventoryStore:
    if settings.backend == "sheets":
        if not settings.sheets_configured:
            raise StorageError(
                "INVENTORY_BACKEND=sheets requires GOOGLE_SERVICE_ACCOUNT_EMAIL, "
                "GOOGLE_PRIVATE_KEY and GOOGLE_SPREADSHEET_ID"
            )
        client = GoogleSheetsValuesClient.from_service_account(
            settings.google_service_account_email,
            settings.google_private_key,
            settings.google_spreadsheet_id,
        )
        store = SheetsInventoryStore(client)
        store.initialize()
        return store
    return SqliteInventoryStore(settings.db_path, root_dir=settings.root_dir or os.getcwd())


def build_services(settings: Settings, *, offline: bool = False, store: Optional[InventoryStore] = None) -> Services:
    """Wire store, ledger, parser, executor and pipeline from settings.

    offline=True skips every network collaborator (model, transcription,
    WhatsApp); parsing then uses the regex fallback only.
    """
    closables: List[Any] = []
    store = store or build_store(settings)
    closables.append(store)
    ledger = InventoryLedger(store, account=settings.account)
    transactions = TransactionLog(store, account=settings.account)

    nlu: Optional[NluClient] = None
    if not offline and settings.nlu_enabled:
        try:
            nlu = NluClient(
                NluConfig(
                    api_key=settings.nlu_api_key,
                    model=settings.nlu_model,
                    base_url=settings.nlu_base_url,
                    timeout_seconds=settings.nlu_timeout_seconds,
                )
            )
            closables.append(nlu)
        except NluError as e:
            log.warning(f"NLU disabled: {e}; using the regex parser only")
    parser = IntentParser(nlu)

    transcriber: Optional[WhisperTranscriber] = None
    if not offline and settings.transcription_enabled:
        try:
            transcriber = WhisperTranscriber(
                settings.transcription_api_key,
                model=settings.whisper_model,
                base_url=settings.transcription_base_url,
            )
            closables.append(transcriber)
        except TranscriptionError as e:
            log.warning(f"Voice notes disabled: {e}")

    executor = ActionExecutor(ledger, transactions)
    pipeline = MessagePipeline(parser, executor, transcriber=transcriber)

    whatsapp: Optional[WhatsAppClient] = None
    if not offline and settings.whatsapp_configured:
        try:
            whatsapp = WhatsAppClient(
                settings.whatsapp_phone_number_id,
                settings.whatsapp_access_token,
                api_version=settings.whatsapp_api_version,
            )
            closables.append(whatsapp)
        except WhatsAppError as e:
            log.warning(f"WhatsApp channel disabled: {e}")

    return Services(
        settings=settings,
        store=store,
        ledger=ledger,
        transactions=transactions,
        parser=parser,
        executor=executor,
        pipeline=pipeline,
        whatsapp=whatsapp,
        _closables=closables,
    )
