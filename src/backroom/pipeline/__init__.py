from .executor import ActionExecutor
from .flow import HELP_COMMANDS, MessagePipeline
from .formatter import format_response
from .transcribe import TranscriptionError, WhisperTranscriber

__all__ = [
    "ActionExecutor",
    "HELP_COMMANDS",
    "MessagePipeline",
    "format_response",
    "TranscriptionError",
    "WhisperTranscriber",
]
