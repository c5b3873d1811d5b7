#!/usr/bin/env python3
"""
Real-time eligibility check from the command line.

Usage:
    python scripts/check_eligibility.py JANE DOE 1980-01-31 utah_medicaid
    python scripts/check_eligibility.py JANE DOE 1980-01-31 aetna --member-id W123456789 --gender F
    python scripts/check_eligibility.py JANE DOE 1980-01-31 utah_medicaid --config config.yaml --payers payers.yaml

Exit codes:
    0  enrolled
    1  not enrolled, or manual review required
    2  validation, configuration, transport or response failure
"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))

from x12_eligibility.config import load_config, load_config_from_file  # noqa: E402
from x12_eligibility.services.edi import (  # noqa: E402
    PatientQuery,
    PayerConfigRegistry,
    check_eligibility,
)
from x12_eligibility.utils.errors import EligibilityError  # noqa: E402
from x12_eligibility.utils.logging import setup_logging  # noqa: E402


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check insurance eligibility with an X12 270/271 exchange")
    parser.add_argument("first_name")
    parser.add_argument("last_name")
    parser.add_argument("date_of_birth", type=date.fromisoformat, help="YYYY-MM-DD")
    parser.add_argument("payer", help="Payer key or display name from the payer file")
    parser.add_argument("--member-id")
    parser.add_argument("--ssn")
    parser.add_argument("--gender", choices=["M", "F", "U"])
    parser.add_argument("--service-date", type=date.fromisoformat)
    parser.add_argument("--payers", default=str(ROOT / "payers.yaml"), help="Payer configuration YAML")
    parser.add_argument("--config", help="Application configuration YAML (defaults to environment)")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--json-logs", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    config = load_config_from_file(args.config) if args.config else load_config()
    setup_logging(level=args.log_level, log_file=config.logging.log_file, json_logs=args.json_logs)

    query = PatientQuery(
        first_name=args.first_name,
        last_name=args.last_name,
        date_of_birth=args.date_of_birth,
        member_id=args.member_id,
        ssn=args.ssn,
        gender=args.gender,
        service_date=args.service_date,
    )

    try:
        payer = PayerConfigRegistry.from_yaml(args.payers).get(args.payer)
        result = check_eligibility(query, payer, config)
    except EligibilityError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str))
        return 2

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.enrolled else 1


if __name__ == "__main__":
    sys.exit(main())
