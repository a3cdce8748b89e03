import os

DEFAULT_MODEL = "gpt-4o-mini"


def ai_enabled() -> bool:
    """Return True unless OCR_CLEANER_USE_AI switches the completion service off."""
    val = os.getenv("OCR_CLEANER_USE_AI")
    if val is None:
        return True
    return val.lower() in {"true", "1", "yes", "on"}


def default_model() -> str:
    """Model name for the completion service, overridable via OCR_CLEANER_MODEL."""
    return os.getenv("OCR_CLEANER_MODEL") or DEFAULT_MODEL
