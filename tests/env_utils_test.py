import pytest
from ocr_cleaner.env_utils import DEFAULT_MODEL, ai_enabled, default_model


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, True),
        ("true", True),
        ("YES", True),
        ("false", False),
        ("0", False),
        ("off", False),
    ],
)
def test_ai_enabled(monkeypatch, value, expected):
    if value is None:
        monkeypatch.delenv("OCR_CLEANER_USE_AI", raising=False)
    else:
        monkeypatch.setenv("OCR_CLEANER_USE_AI", value)
    assert ai_enabled() is expected


def test_default_model(monkeypatch):
    monkeypatch.delenv("OCR_CLEANER_MODEL", raising=False)
    assert default_model() == DEFAULT_MODEL
    monkeypatch.setenv("OCR_CLEANER_MODEL", "claude-haiku")
    assert default_model() == "claude-haiku"
