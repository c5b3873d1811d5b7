"""
Pydantic Schemas for Payer Configuration.

A PayerConfig tells the 270 builder which identifiers a payer accepts,
which fields it requires, and how it wants the service date expressed.
It is resolved once per inquiry and never mutated.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from x12_eligibility.core.enums import (
    Clearinghouse,
    DateFormatQualifier,
    FieldRequirement,
    PayerCategory,
)

PATIENT_FIELDS = (
    "first_name",
    "last_name",
    "date_of_birth",
    "gender",
    "member_id",
    "ssn",
)


class PayerConfig(BaseModel):
    """Per-payer rules for building a 270 inquiry."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Display name")
    payer_name: str = Field(default="", description="Name sent in NM1*PR; defaults to name")
    payer_code: Optional[str] = Field(default=None, description="Payer id used by every clearinghouse")
    clearinghouse_payer_codes: dict[Clearinghouse, str] = Field(
        default_factory=dict,
        description="Clearinghouse-specific payer ids that override payer_code",
    )
    category: PayerCategory = PayerCategory.MEDICAID
    program_name: Optional[str] = Field(default=None, description="Fee-for-service program label")

    field_requirements: dict[str, FieldRequirement] = Field(default_factory=dict)
    date_format: DateFormatQualifier = DateFormatQualifier.SINGLE_DATE
    requires_gender_in_dmg: bool = False
    supports_member_id_in_nm1: bool = True
    accepts_ssn: bool = False
    allows_name_only: bool = True
    service_type_codes: tuple[str, ...] = ("30",)

    provider_npi: Optional[str] = None
    provider_name: Optional[str] = None

    @field_validator("field_requirements")
    @classmethod
    def validate_field_names(cls, v: dict[str, FieldRequirement]) -> dict[str, FieldRequirement]:
        unknown = sorted(set(v) - set(PATIENT_FIELDS))
        if unknown:
            raise ValueError(f"Unknown patient fields: {', '.join(unknown)}")
        return v

    @field_validator("service_type_codes")
    @classmethod
    def validate_service_types(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("At least one EQ service type code is required")
        return tuple(code.strip().upper() for code in v)

    @property
    def nm1_payer_name(self) -> str:
        return (self.payer_name or self.name).upper()

    @property
    def required_fields(self) -> list[str]:
        return [name for name, level in self.field_requirements.items() if level == FieldRequirement.REQUIRED]

    @property
    def recommended_fields(self) -> list[str]:
        return [name for name, level in self.field_requirements.items() if level == FieldRequirement.RECOMMENDED]

    def payer_code_for(self, clearinghouse: Optional[Clearinghouse] = None) -> Optional[str]:
        """Resolve the payer id for a clearinghouse, falling back to payer_code."""
        if clearinghouse is not None and clearinghouse in self.clearinghouse_payer_codes:
            return self.clearinghouse_payer_codes[clearinghouse]
        return self.payer_code or None

    def missing_fields(self, query: Any) -> list[str]:
        """Required fields that are empty on a patient query."""
        return [name for name in self.required_fields if not getattr(query, name, None)]

    @property
    def is_commercial(self) -> bool:
        return self.category == PayerCategory.COMMERCIAL
