"""Pydantic schemas."""

from x12_eligibility.schemas.payer import PATIENT_FIELDS, PayerConfig

__all__ = ["PATIENT_FIELDS", "PayerConfig"]
