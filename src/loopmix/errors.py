"""Structured audio errors shared by every service layer."""

from __future__ import annotations

import enum
import sys
import time
from typing import Any, Optional


class AudioErrorKind(str, enum.Enum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    RECORDING_FAILED = "RECORDING_FAILED"
    PLAYBACK_FAILED = "PLAYBACK_FAILED"
    MIXING_FAILED = "MIXING_FAILED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    INVALID_FORMAT = "INVALID_FORMAT"
    RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RECOVERABLE_KINDS = frozenset({
    AudioErrorKind.RECORDING_FAILED,
    AudioErrorKind.PLAYBACK_FAILED,
    AudioErrorKind.MIXING_FAILED,
    AudioErrorKind.RESOURCE_UNAVAILABLE,
})

DEFAULT_USER_MESSAGES = {
    AudioErrorKind.PERMISSION_DENIED: (
        "Microphone permission is required to record audio. "
        "Please grant permission in your system settings."
    ),
    AudioErrorKind.RECORDING_FAILED: "Failed to record audio. Please try again.",
    AudioErrorKind.PLAYBACK_FAILED: "Failed to play audio. The file may be corrupted.",
    AudioErrorKind.MIXING_FAILED: "Failed to mix audio tracks. Please try again.",
    AudioErrorKind.FILE_NOT_FOUND: "Audio file not found. It may have been deleted.",
    AudioErrorKind.INVALID_FORMAT: "Unsupported audio format. Please use MP3, WAV, or M4A files.",
    AudioErrorKind.RESOURCE_UNAVAILABLE: (
        "Audio resource is currently unavailable. Please try again later."
    ),
    AudioErrorKind.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}


class AudioError(Exception):
    """An audio failure with a technical message and a user-facing one.

    ``str(err)`` is the technical message, meant for logs. ``user_message``
    is plain text suitable for showing to the user. ``recoverable`` is fixed
    by the kind and drives :func:`loopmix.retry.with_retry`.
    """

    def __init__(
        self,
        kind: AudioErrorKind,
        message: str,
        user_message: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = AudioErrorKind(kind)
        self.message = message
        self.user_message = user_message or DEFAULT_USER_MESSAGES[self.kind]
        self.context = context
        self.platform = sys.platform
        self.timestamp = time.time()

    @property
    def recoverable(self) -> bool:
        return self.kind in RECOVERABLE_KINDS

    def is_permission_error(self) -> bool:
        return self.kind is AudioErrorKind.PERMISSION_DENIED

    def to_dict(self) -> dict:
        """Serializable form for logging and diagnostics."""
        context = None
        if self.context is not None:
            context = {k: _loggable(v) for k, v in self.context.items()}
        return {
            "kind": self.kind.value,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "platform": self.platform,
            "timestamp": self.timestamp,
            "context": context,
        }

    def __repr__(self) -> str:
        return f"AudioError({self.kind.value}, {self.message!r})"


def wrap(
    exc: BaseException,
    kind: AudioErrorKind,
    message: str,
    user_message: Optional[str] = None,
    **context: Any,
) -> AudioError:
    """Convert a backend exception into an AudioError.

    AudioErrors are returned unchanged so that a more specific kind raised
    deeper down is never overwritten.
    """
    if isinstance(exc, AudioError):
        return exc
    context["original_error"] = exc
    return AudioError(kind, f"{message}: {exc}", user_message, context)


def _loggable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_loggable(v) for v in value]
    return repr(value)
