from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


DEFAULT_UNIT = "units"


class Action(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    CHECK = "check"
    ADJUST = "adjust"
    LIST = "list"
    HELP = "help"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: Any) -> "Action":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return cls.UNKNOWN
        return cls.UNKNOWN


class TransactionAction(str, Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"
    ADJUST = "ADJUST"


@dataclass
class IntentItem:
    name: str
    quantity: float
    unit: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class ParsedIntent:
    action: Action
    items: List[IntentItem] = field(default_factory=list)
    search_query: Optional[str] = None
    confidence: float = 0.0
    original_message: Optional[str] = None
    source: str = "nlu"  # nlu | fallback | shortcut | degraded

    @classmethod
    def unknown(cls, message: Optional[str] = None, *, source: str = "degraded") -> "ParsedIntent":
        return cls(action=Action.UNKNOWN, confidence=0.0, original_message=message, source=source)


@dataclass
class InventoryItem:
    name: str
    quantity: float
    unit: str = DEFAULT_UNIT
    updated_at: Optional[str] = None
    updated_by: Optional[str] = None
    item_id: Optional[int] = None
    account: Optional[str] = None
    created_at: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "updated_at": self.updated_at,
            "updated_by": self.updated_by,
            "created_at": self.created_at,
        }


@dataclass
class Transaction:
    action: TransactionAction
    item_name: str
    quantity: float
    unit: Optional[str]
    user_id: Optional[str]
    notes: str = ""
    timestamp: Optional[str] = None
    transaction_id: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "timestamp": self.timestamp,
            "action": self.action.value,
            "item_name": self.item_name,
            "quantity": self.quantity,
            "unit": self.unit,
            "user_id": self.user_id,
            "notes": self.notes,
        }


@dataclass
class ItemChange:
    """One mutated item: the requested quantity plus the post-mutation snapshot."""

    item: InventoryItem
    quantity: float
    unit: str


@dataclass
class ActionResult:
    action: Action
    success: bool
    items: List[ItemChange] = field(default_factory=list)
    data: Optional[List[InventoryItem]] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class InboundMessage:
    sender: str
    text: str = ""
    message_id: Optional[str] = None
    is_voice: bool = False
    audio: Optional[bytes] = None
    audio_id: Optional[str] = None
    audio_mime_type: Optional[str] = None
    contact_name: Optional[str] = None


@dataclass
class PipelineReply:
    success: bool
    message: str
