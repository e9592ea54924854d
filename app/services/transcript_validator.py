from __future__ import annotations

from app.services.action_item_models import Transcript

DEFAULT_MAX_TRANSCRIPT_BYTES = 10 * 1024 * 1024


class TranscriptValidationError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def validate_transcript(
    raw: str | bytes,
    *,
    source_filename: str | None = None,
    max_bytes: int = DEFAULT_MAX_TRANSCRIPT_BYTES,
) -> Transcript:
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise TranscriptValidationError("malformed", "Transcript is not valid UTF-8 text.") from exc
    elif isinstance(raw, str):
        text = raw.removeprefix("\ufeff")
    else:
        raise TranscriptValidationError("malformed", "Transcript must be text.")

    if "\x00" in text:
        raise TranscriptValidationError("malformed", "Transcript contains binary data.")
    if not text.strip():
        raise TranscriptValidationError("empty", "Transcript content is required.")

    byte_length = len(text.encode("utf-8"))
    if byte_length > max_bytes:
        raise TranscriptValidationError(
            "oversized",
            f"Transcript is {byte_length} bytes; the limit is {max_bytes} bytes.",
        )

    filename = source_filename.strip() if isinstance(source_filename, str) else None
    return Transcript(text=text, byte_length=byte_length, source_filename=filename or None)
