"""User-facing reply copy. Pure functions, no I/O."""

from __future__ import annotations

from typing import Iterable, List

from ..domain.models import Action, ActionResult, InventoryItem, ItemChange
from ..domain.normalize import format_quantity


MAX_LISTED_ITEMS = 10

HELP_MENU = (
    "👋 Welcome to The Backroom!\n\n"
    "I help you manage inventory via WhatsApp. Just tell me:\n\n"
    "📥 *Add stock:* \"Got 50 bottles of Coke\"\n"
    "📤 *Remove stock:* \"Sold 3 solar panels\"\n"
    "🔄 *Stocktake:* \"Stock count: 100 screws, 50 bolts\"\n"
    "🔍 *Check stock:* \"How many batteries?\"\n"
    "📋 *List all:* \"What's in stock?\"\n\n"
    "I understand natural language - just chat like normal!"
)

NOT_UNDERSTOOD = (
    "🤔 I'm not sure what you mean. Try saying things like:\n"
    "• \"Added 10 boxes of screws\"\n"
    "• \"Sold 5 batteries\"\n"
    "• \"How many cables do we have?\""
)

GENERIC_FAILURE = "Something went wrong. Please try again."
APOLOGY = "❌ Sorry, something went wrong. Please try again in a moment."
VOICE_UNSUPPORTED = "🎤 Voice notes are currently not supported. Please send a text message instead."
TRANSCRIPTION_FAILED = "🎤 Sorry, I couldn't understand that voice note. Please try again or send a text message."


def clarification_message(original_text: str) -> str:
    return (
        "🤔 I'm not quite sure what you mean by:\n"
        f"\"{original_text}\"\n\n"
        "Try being more specific, like:\n"
        "• \"Added 10 boxes of screws\"\n"
        "• \"Sold 5 batteries\"\n"
        "• \"Check cable stock\""
    )


def _describe_change(change: ItemChange) -> str:
    # "3 pieces of solar panels (now 20 pieces)"
    return (
        f"{format_quantity(change.quantity)} {change.unit} of {change.item.name}"
        f" (now {format_quantity(change.item.quantity)} {change.item.unit})"
    )


def _describe_level(change: ItemChange) -> str:
    return f"• {change.item.name}: {format_quantity(change.item.quantity)} {change.item.unit}"


def _bullets(items: Iterable[InventoryItem]) -> List[str]:
    return [f"• {i.name}: {format_quantity(i.quantity)} {i.unit}" for i in items]


def _capped_listing(header: str, data: List[InventoryItem]) -> str:
    lines = _bullets(data[:MAX_LISTED_ITEMS])
    text = header + "\n" + "\n".join(lines)
    if len(data) > MAX_LISTED_ITEMS:
        text += f"\n... and {len(data) - MAX_LISTED_ITEMS} more items"
    return text


def format_response(result: ActionResult) -> str:
    """Render an ActionResult as the WhatsApp reply text."""
    action = result.action
    if action is Action.UNKNOWN:
        return NOT_UNDERSTOOD
    if not result.success:
        return f"❌ {result.error or GENERIC_FAILURE}"

    if action is Action.ADD:
        changed = ", ".join(_describe_change(c) for c in result.items)
        return f"✅ Added to inventory:\n{changed}\n\n📊 Your inventory has been updated!"

    if action is Action.REMOVE:
        changed = ", ".join(_describe_change(c) for c in result.items)
        text = f"✅ Removed from inventory:\n{changed}\n\n📊 Your inventory has been updated!"
        if result.warnings:
            text += "\n\n⚠️ Some items were skipped:\n" + "\n".join(f"• {w}" for w in result.warnings)
        return text

    if action is Action.ADJUST:
        levels = "\n".join(_describe_level(c) for c in result.items)
        return f"✅ Stock levels adjusted!\n{levels}\n\n📊 Your inventory has been updated with the new counts."

    if action is Action.CHECK:
        data = result.data or []
        if not data:
            return "🔍 No items found matching your search."
        return _capped_listing("📦 Current stock levels:", data)

    if action is Action.LIST:
        data = result.data or []
        if not data:
            return "📦 Your inventory is empty. Send me items to add!"
        return _capped_listing("📦 Inventory list:", data)

    if action is Action.HELP:
        return HELP_MENU

    return NOT_UNDERSTOOD
