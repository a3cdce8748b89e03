from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

from tests.conftest import prose

ROOT = Path(__file__).resolve().parents[1]


def _run_cli(*args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "ocr_cleaner.cli", *args],
        capture_output=True,
        text=True,
        env={**os.environ, "PYTHONPATH": str(ROOT), "OCR_CLEANER_USE_AI": "false"},
        cwd=cwd,
    )


def _book(tmp_path: Path) -> Path:
    paragraphs = prose(6).split("\n\n")
    numbered = []
    for i, paragraph in enumerate(paragraphs):
        numbered += [paragraph, str(90 + i)]
    path = tmp_path / "the_river.md"
    path.write_text("\n\n".join(numbered), encoding="utf-8")
    return path


def test_clean_writes_output_and_report(tmp_path: Path) -> None:
    src = _book(tmp_path)
    out = tmp_path / "clean.md"
    report = tmp_path / "report.json"
    result = _run_cli(
        "clean", str(src), "--no-ai", "--out", str(out), "--report", str(report), cwd=tmp_path
    )
    assert result.returncode == 0, result.stderr
    cleaned = out.read_text(encoding="utf-8")
    assert "\n\n90\n\n" not in cleaned
    assert "The river carried silt" in cleaned
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["state"] == "complete"
    assert data["used_ai_analysis"] is False
    assert data["content"]["document_id"] == "the_river.md"
    assert "the_river.md:" in result.stderr


def test_clean_prints_to_stdout_without_out(tmp_path: Path) -> None:
    result = _run_cli("clean", str(_book(tmp_path)), "--no-ai", cwd=tmp_path)
    assert result.returncode == 0, result.stderr
    assert "The river carried silt" in result.stdout


def test_patterns_prints_json(tmp_path: Path) -> None:
    result = _run_cli("patterns", str(_book(tmp_path)))
    assert result.returncode == 0, result.stderr
    data = json.loads(result.stdout)
    assert set(data) >= {"page_numbers", "citations", "footnote_markers"}


def test_clean_missing_file_exits_nonzero(tmp_path: Path) -> None:
    result = _run_cli("clean", "missing.md", "--no-ai", cwd=tmp_path)
    assert result.returncode != 0
    err = result.stderr.lower()
    assert "does not exist" in err or "no such file" in err


def test_unknown_content_type_is_a_usage_error(tmp_path: Path) -> None:
    result = _run_cli(
        "clean", str(_book(tmp_path)), "--no-ai", "--content-type", "opera", cwd=tmp_path
    )
    assert result.returncode == 2
    assert "opera" in result.stderr
