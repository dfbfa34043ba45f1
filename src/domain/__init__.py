"""Domain layer for the offline lookup core.

This module contains the record and dataset models, the legacy day-number
clock and the device trust controller. All domain models are pure Python with
no external dependencies beyond Pydantic.
"""

from .records import (
    Record,
    Dataset,
    SigiresPatient,
    ValidationPayload,
    DeviceIdentity,
    VARIANT_A,
    VARIANT_B,
)

__all__ = [
    "Record",
    "Dataset",
    "SigiresPatient",
    "ValidationPayload",
    "DeviceIdentity",
    "VARIANT_A",
    "VARIANT_B",
]
