"""Application services for the offline lookup core.

These services orchestrate the domain (trust controller) and the adapters
(record store, remote client, state store) for front ends such as the CLI.
"""

from src.services.container import LookupApp, build_app
from src.services.dataset_import import DatasetImportService
from src.services.patient_lookup import PatientLookupService, PatientMatch, safe_value

__all__ = [
    "LookupApp",
    "build_app",
    "DatasetImportService",
    "PatientLookupService",
    "PatientMatch",
    "safe_value",
]
