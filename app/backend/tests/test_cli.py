"""
Test the command line interface.
"""

from datetime import date

import pytest
import typer
from typer.testing import CliRunner

from curtailment_mining.cli import _parse_date, app

runner = CliRunner()


def test_parse_date():
    assert _parse_date("2024-06-01") == date(2024, 6, 1)
    with pytest.raises(typer.BadParameter):
        _parse_date("01/06/2024")


def test_bad_date_is_rejected():
    result = runner.invoke(app, ["reconcile", "June 1st"])
    assert result.exit_code != 0


def test_reset_checkpoints_can_be_declined():
    result = runner.invoke(app, ["reset-checkpoints", "2024-06"], input="n\n")

    assert result.exit_code == 0
    assert "Operation cancelled" in result.output


def test_commands_are_registered():
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    for command in ("reconcile", "reconcile-range", "resume", "audit", "status", "checkpoints",
                    "reset-checkpoints", "rebuild-summaries"):
        assert command in result.output
