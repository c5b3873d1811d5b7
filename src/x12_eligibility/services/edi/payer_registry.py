"""
YAML-backed payer configuration lookup.

Payer entries live in a YAML file keyed by a short payer key:

    utah_medicaid:
      name: Utah Medicaid
      payer_name: UTAH MEDICAID
      clearinghouse_payer_codes:
        office_ally: UTMCD
        uhin: HT000004-001
      allows_name_only: true
      field_requirements:
        first_name: required
        last_name: required
        date_of_birth: required
"""

from pathlib import Path
from typing import Any, Dict, Iterator, Mapping

import yaml
from pydantic import ValidationError as PydanticValidationError

from x12_eligibility.schemas.payer import PayerConfig
from x12_eligibility.utils.errors import ConfigurationError, ValidationError
from x12_eligibility.utils.logging import get_logger

logger = get_logger(__name__)


def _normalize(key: str) -> str:
    return " ".join(key.replace("_", " ").replace("-", " ").lower().split())


class PayerConfigRegistry:
    """Resolves PayerConfig by key or display name, case-insensitively."""

    def __init__(self, payers: Mapping[str, PayerConfig]):
        self._payers: Dict[str, PayerConfig] = {}
        for key, payer in payers.items():
            self._payers[_normalize(key)] = payer
            self._payers.setdefault(_normalize(payer.name), payer)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PayerConfigRegistry":
        payers = {}
        for key, entry in data.items():
            try:
                payers[key] = PayerConfig(**entry)
            except PydanticValidationError as e:
                raise ConfigurationError(f"Invalid payer configuration '{key}': {e}") from e
        logger.debug(f"Loaded {len(payers)} payer configurations")
        return cls(payers)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PayerConfigRegistry":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Payer configuration file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: expected a mapping of payer keys to entries")
        return cls.from_mapping(data.get("payers", data))

    def get(self, name: str) -> PayerConfig:
        """
        Raises:
            ValidationError: unknown payer
        """
        payer = self._payers.get(_normalize(name))
        if payer is None:
            raise ValidationError(f"Unknown payer: {name}", fields=["payer"])
        return payer

    def __contains__(self, name: str) -> bool:
        return _normalize(name) in self._payers

    def __iter__(self) -> Iterator[PayerConfig]:
        seen = set()
        for payer in self._payers.values():
            if id(payer) not in seen:
                seen.add(id(payer))
                yield payer

    def __len__(self) -> int:
        return len({id(p) for p in self._payers.values()})
