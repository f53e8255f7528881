"""Message -> ParsedIntent, via the language model with a regex fallback."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Protocol

from ..domain.models import Action, IntentItem, ParsedIntent
from ..domain.normalize import canonical_name, coerce_quantity
from ..logging import get_logger
from .client import NluError


LOG = get_logger("nlu-intent")


SYSTEM_PROMPT = """You are an AI assistant for "The Backroom" - an inventory management system for small businesses. Your job is to parse natural language messages about inventory into structured data.

Users will send messages about:
1. ADDING stock (received items, deliveries, purchases)
2. REMOVING stock (sales, used items, damaged goods, theft)
3. CHECKING stock levels
4. ADJUSTING stock (corrections, stocktake)
5. LISTING all items or searching for items

Parse the user's message and respond with a JSON object. Always respond ONLY with valid JSON, no other text or markdown.

Response format:
{
  "action": "add" | "remove" | "check" | "adjust" | "list" | "help" | "unknown",
  "items": [
    {
      "name": "item name (standardized, lowercase)",
      "quantity": number,
      "unit": "units" | "kg" | "liters" | "boxes" | "packs" | "pieces" | etc,
      "notes": "any additional context"
    }
  ],
  "searchQuery": "search term if action is list or check",
  "confidence": 0.0 to 1.0,
  "originalMessage": "the original message for reference"
}

Examples:
- "Got 50 bottles of Coke" -> action: "add", items: [{name: "coke bottles", quantity: 50, unit: "bottles"}]
- "Sold 3 solar panels" -> action: "remove", items: [{name: "solar panels", quantity: 3, unit: "pieces"}]
- "How many batteries do we have?" -> action: "check", searchQuery: "batteries"
- "Stock count: 100 screws, 50 bolts" -> action: "adjust", items: [...]
- "What's in stock?" -> action: "list"

Handle South African English, slang, and common misspellings. Be smart about inferring units when not specified."""


FALLBACK_CONFIDENCE = 0.8

# Words accepted as a unit right after the quantity even without "of"
KNOWN_UNITS = frozenset(
    """
    unit units piece pieces pc pcs box boxes pack packs packet packets bag bags
    bottle bottles can cans case cases carton cartons crate crates roll rolls
    pair pairs dozen tray trays tube tubes sheet sheets meter meters
    metre metres m cm mm kg kgs g gram grams l liter liters litre litres ml
    """.split()
)

# "set" and "count" also occur in item names ("tv set"), so they only mark a
# stocktake when they open the message
_ADJUST_LEAD_RE = re.compile(
    r"^\s*(?:stock\s*count|stock\s*take|stocktake|adjust(?:ed)?|set|count(?:ed)?)\b", re.IGNORECASE
)
_ADJUST_RE = re.compile(r"\b(?:stock\s*count|stock\s*take|stocktake|adjust(?:ed)?)\b", re.IGNORECASE)
_SET_TO_RE = re.compile(r"^\s*set\s+(.+?)\s+to\s+(\d+(?:[.,]\d+)?)\s*([^\W\d]+)?\s*[.!?]*\s*$", re.IGNORECASE)
_ADD_RE = re.compile(r"\b(?:add|added|got|received|bought|purchase|purchased)\b", re.IGNORECASE)
_REMOVE_RE = re.compile(r"\b(?:sold|sell|remove|removed|used|took)\b", re.IGNORECASE)

_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")
# A comma between digits is a decimal separator ("2,5 kg"), not a list separator
_SEGMENT_SPLIT_RE = re.compile(r"\s*(?:(?<!\d),|;|&|\band\b)\s*(?=\d)", re.IGNORECASE)
_SEGMENT_RE = re.compile(r"^\s*(\d+(?:[.,]\d+)?)\s*(.*?)\s*$", re.DOTALL)

_LIST_RE = re.compile(
    r"^\s*(?:list(?:\s+all)?|inventory|stock\s*list|show\s+(?:me\s+)?(?:all|everything|stock|inventory)"
    r"|what'?s\s+in\s+stock|what\s+do\s+we\s+have)\b",
    re.IGNORECASE,
)
_CHECK_PATTERNS = (
    re.compile(r"\bhow\s+(?:many|much)\s+(.+?)(?:\s+(?:do|does|have|has|are|is|left|remaining|in\s+stock)\b.*)?\s*\??\s*$", re.IGNORECASE),
    re.compile(r"^\s*check\s+(?:on\s+)?(.+?)(?:\s+(?:stock|levels?))?\s*\??\s*$", re.IGNORECASE),
    re.compile(r"^\s*(.+?)\s+stock(?:\s+levels?)?\s*\??\s*$", re.IGNORECASE),
)


class JsonCompleter(Protocol):
    def complete_json(self, system_prompt: str, user_message: str) -> Dict[str, Any]:
        ...


def _parse_segment(segment: str) -> Optional[IntentItem]:
    m = _SEGMENT_RE.match(segment)
    if not m:
        return None
    quantity = coerce_quantity(m.group(1))
    words = m.group(2).split()
    if quantity is None or not words:
        return None
    unit: Optional[str] = None
    if len(words) >= 3 and words[1].lower() == "of":
        unit, words = words[0], words[2:]
    elif len(words) >= 2 and words[0].lower() in KNOWN_UNITS:
        unit, words = words[0], words[1:]
    name = canonical_name(" ".join(words))
    if not name:
        return None
    return IntentItem(name=name, quantity=quantity, unit=unit.lower() if unit else None)


def _extract_items(message: str, verb_match: "re.Match[str]") -> List[IntentItem]:
    tail = message[verb_match.end():]
    number = _NUMBER_RE.search(tail)
    if number is None:
        # "10 boxes of nails received": take the number anywhere, drop the verb
        stripped = message[: verb_match.start()] + message[verb_match.end():]
        number = _NUMBER_RE.search(stripped)
        if number is None:
            return []
        tail = stripped
    body = tail[number.start():].strip().rstrip(".!?")
    items = []
    for segment in _SEGMENT_SPLIT_RE.split(body):
        item = _parse_segment(segment)
        if item is not None:
            items.append(item)
    return items


def parse_simple(message: str) -> ParsedIntent:
    """Regex heuristic used when the model is disabled or degraded.

    "Added 10 boxes of nails" -> add [nails x10 boxes], confidence 0.8.
    A unit is only taken when followed by "of" or when it is a known unit
    word; otherwise the unit is left unset and the ledger keeps/defaults it.
    """
    text = (message or "").strip()
    if not text:
        return ParsedIntent.unknown(message, source="fallback")

    set_to = _SET_TO_RE.match(text)
    if set_to:
        name = canonical_name(set_to.group(1))
        quantity = coerce_quantity(set_to.group(2))
        if name and quantity is not None:
            unit = set_to.group(3)
            return ParsedIntent(
                action=Action.ADJUST,
                items=[IntentItem(name=name, quantity=quantity, unit=unit.lower() if unit else None)],
                confidence=FALLBACK_CONFIDENCE,
                original_message=message,
                source="fallback",
            )

    verb_families = (
        (Action.ADJUST, _ADJUST_LEAD_RE),
        (Action.ADD, _ADD_RE),
        (Action.REMOVE, _REMOVE_RE),
        (Action.ADJUST, _ADJUST_RE),
    )
    for action, pattern in verb_families:
        verb = pattern.search(text)
        if verb is None:
            continue
        items = _extract_items(text, verb)
        if items:
            return ParsedIntent(
                action=action,
                items=items,
                confidence=FALLBACK_CONFIDENCE,
                original_message=message,
                source="fallback",
            )

    if _LIST_RE.search(text):
        return ParsedIntent(action=Action.LIST, confidence=FALLBACK_CONFIDENCE, original_message=message, source="fallback")

    for pattern in _CHECK_PATTERNS:
        m = pattern.search(text)
        if m:
            query = canonical_name(re.sub(r"^(?:the|our|my)\s+", "", m.group(1), flags=re.IGNORECASE))
            if query:
                return ParsedIntent(
                    action=Action.CHECK,
                    search_query=query,
                    confidence=FALLBACK_CONFIDENCE,
                    original_message=message,
                    source="fallback",
                )

    return ParsedIntent.unknown(message, source="fallback")


def intent_from_payload(data: Dict[str, Any], message: str) -> ParsedIntent:
    """Coerce a model JSON object into a well-formed ParsedIntent."""
    action = Action.coerce(data.get("action"))

    items: List[IntentItem] = []
    raw_items = data.get("items")
    if isinstance(raw_items, list):
        for idx, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                continue
            name = canonical_name(raw.get("name"))
            quantity = coerce_quantity(raw.get("quantity"))
            if not name or quantity is None or quantity < 0:
                LOG.debug("Dropping model item %d with name=%r quantity=%r", idx, raw.get("name"), raw.get("quantity"))
                continue
            unit = raw.get("unit")
            notes = raw.get("notes")
            items.append(
                IntentItem(
                    name=name,
                    quantity=quantity,
                    unit=str(unit).strip().lower() if isinstance(unit, str) and unit.strip() else None,
                    notes=str(notes).strip() if isinstance(notes, str) and notes.strip() else None,
                )
            )

    query = data.get("searchQuery")
    if query is None:
        query = data.get("search_query")
    search_query = canonical_name(query) if isinstance(query, str) and query.strip() else None

    confidence = coerce_quantity(data.get("confidence"))
    confidence = 0.0 if confidence is None else min(1.0, max(0.0, confidence))

    return ParsedIntent(
        action=action,
        items=items,
        search_query=search_query,
        confidence=confidence,
        original_message=message,
        source="nlu",
    )


class IntentParser:
    """Always returns a well-formed ParsedIntent; never raises.

    With no model client, only the regex fallback runs. When the model call
    degrades (timeout, HTTP error, bad JSON) the result is `unknown` with
    confidence 0, optionally rescued by the fallback.
    """

    def __init__(self, nlu_client: Optional[JsonCompleter] = None, *, fallback_on_degraded: bool = True) -> None:
        self.nlu = nlu_client
        self.fallback_on_degraded = fallback_on_degraded

    def parse(self, message: str) -> ParsedIntent:
        if self.nlu is None:
            parsed = parse_simple(message)
            LOG.info("Parsed with fallback: action=%s confidence=%s", parsed.action.value, parsed.confidence)
            return parsed

        parsed = self._parse_with_model(message)
        if parsed.source == "degraded" and self.fallback_on_degraded:
            rescued = parse_simple(message)
            if rescued.action is not Action.UNKNOWN:
                LOG.info("Model degraded; fallback parsed action=%s", rescued.action.value)
                return rescued
        return parsed

    def _parse_with_model(self, message: str) -> ParsedIntent:
        prompt = f'User message: "{message}"\n\nRespond with JSON only:'
        try:
            data = self.nlu.complete_json(SYSTEM_PROMPT, prompt)
            parsed = intent_from_payload(data, message)
        except NluError as exc:
            LOG.warning("Model parse degraded: %s", exc)
            return ParsedIntent.unknown(message)
        except Exception:
            LOG.exception("Unexpected failure while parsing message with the model")
            return ParsedIntent.unknown(message)
        LOG.info(
            "Message parsed: action=%s items=%d confidence=%.2f",
            parsed.action.value, len(parsed.items), parsed.confidence,
        )
        return parsed
