from .whatsapp import WhatsAppClient, WhatsAppError, extract_message_data

__all__ = ["WhatsAppClient", "WhatsAppError", "extract_message_data"]
