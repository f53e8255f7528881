"""
Backroom: WhatsApp-driven inventory tracking.

Inbound messages are parsed into inventory intents, applied to a ledger
(SQLite or Google Sheets), recorded in a transaction log and answered
with a templated reply.
"""

__all__ = [
    "config",
    "logging",
    "paths",
    "services",
]
