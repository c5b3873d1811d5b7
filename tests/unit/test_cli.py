"""
Unit Tests for the eligibility command-line script.

Tests:
- Argument parsing
- Exit codes for enrolled, not enrolled and failed checks
"""

import importlib.util
import json
from datetime import date
from pathlib import Path

import pytest

from x12_eligibility.core.enums import EligibilityOutcome
from x12_eligibility.services.edi.eligibility_rules import NO_ACTIVE_COVERAGE, EligibilityResult
from x12_eligibility.utils.errors import TransportError

SCRIPT = Path(__file__).parent.parent.parent / "scripts" / "check_eligibility.py"


@pytest.fixture
def cli(monkeypatch):
    module_spec = importlib.util.spec_from_file_location("check_eligibility_cli", SCRIPT)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    monkeypatch.setattr(module, "setup_logging", lambda **kwargs: None)
    return module


@pytest.mark.unit
class TestCheckEligibilityScript:
    """Tests for scripts/check_eligibility.py"""

    def test_parse_args(self, cli):
        args = cli.parse_args(["Jane", "Doe", "1980-01-31", "aetna", "--member-id", "W1", "--gender", "F"])

        assert args.date_of_birth == date(1980, 1, 31)
        assert args.member_id == "W1"
        assert args.payers.endswith("payers.yaml")

    def test_enrolled_exit_code(self, cli, monkeypatch, capsys):
        captured = {}

        def fake_check(query, payer, config):
            captured["query"] = query
            captured["payer"] = payer
            return EligibilityResult(enrolled=True, status=EligibilityOutcome.ENROLLED, program="Utah Medicaid")

        monkeypatch.setattr(cli, "check_eligibility", fake_check)

        code = cli.main(["Jane", "Doe", "1980-01-31", "utah_medicaid"])

        assert code == 0
        assert captured["payer"].name == "Utah Medicaid"
        assert captured["query"].last_name == "Doe"
        assert json.loads(capsys.readouterr().out)["status"] == "enrolled"

    def test_not_enrolled_exit_code(self, cli, monkeypatch):
        monkeypatch.setattr(
            cli,
            "check_eligibility",
            lambda query, payer, config: EligibilityResult(
                enrolled=False, status=EligibilityOutcome.NOT_ENROLLED, error_reason=NO_ACTIVE_COVERAGE
            ),
        )

        assert cli.main(["Jane", "Doe", "1980-01-31", "utah_medicaid"]) == 1

    def test_failure_exit_code(self, cli, monkeypatch, capsys):
        def failing_check(query, payer, config):
            raise TransportError("timed out", clearinghouse="office_ally", attempts=2)

        monkeypatch.setattr(cli, "check_eligibility", failing_check)

        assert cli.main(["Jane", "Doe", "1980-01-31", "utah_medicaid"]) == 2
        assert json.loads(capsys.readouterr().out)["error"] == "TransportError"

    def test_unknown_payer_exit_code(self, cli):
        assert cli.main(["Jane", "Doe", "1980-01-31", "acme_health"]) == 2
