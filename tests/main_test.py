from __future__ import annotations

import logging
from pathlib import Path

import pytest

from main import main


def test_missing_rules_file_fails_cleanly(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    missing = tmp_path / "rules.json"

    with caplog.at_level(logging.ERROR):
        exit_code = main(["--rules", f"BTC={missing}", "--db", "sqlite://"])

    assert exit_code == 1
    assert "rules: cannot read rules file" in caplog.text


def test_missing_csv_fails_cleanly(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.ERROR):
        exit_code = main(["--csv", str(tmp_path / "ledger.csv"), "--db", "sqlite://"])

    assert exit_code == 1
    assert "csv: cannot read ledger CSV" in caplog.text
