"""Dataset import workflow.

Bringing a new export onto the device: re-confirm the device key, check the
distributed file name against the rolling token window, check that the file
loads, copy it to the dataset's backing location, load it and stamp its
expiry. A rejected file never touches the current dataset or its backing file.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from src.adapters.record_store import RecordStore
from src.domain.device_trust import DeviceTrustController
from src.domain.ports import NotFoundError, RemoteError, Result
from src.domain.records import Dataset

logger = logging.getLogger(__name__)

KEY_NOT_VALID_MESSAGE = "The device key has expired or could not be confirmed"


class DatasetImportService:
    """Gate, copy, load and stamp a new dataset file."""

    def __init__(self, store: RecordStore, controller: DeviceTrustController):
        self.store = store
        self.controller = controller

    def import_dataset(
        self,
        dataset: Dataset,
        source_path: Union[str, Path],
        backing_path: Union[str, Path],
        ttl_days: int,
        check_token: bool = True
    ) -> Result[int]:
        """Import a source file into a dataset.

        Parameters:
            dataset: Target dataset handle
            source_path: File chosen by the operator
            backing_path: Where the dataset keeps its working copy
            ttl_days: Dataset time-to-live
            check_token: Require the file name to match the rolling token window

        Returns:
            Result[int]: Number of records loaded
        """
        source = Path(source_path)
        if not source.is_file():
            return Result.failure_result(NotFoundError(f"Source file not found: {source}", source=str(source)))

        if not self.controller.check_validity_remote():
            return Result.failure_result(RemoteError(KEY_NOT_VALID_MESSAGE))

        if check_token:
            window = self.controller.rolling_token_window()
            if window.is_failure():
                return Result.failure_result(window.error, error_type=window.error_type, error_details=window.error_details)
            accepted = self.controller.accept_source_file(source.name, window.value)
            if accepted.is_failure():
                return Result.failure_result(accepted.error, error_type=accepted.error_type, error_details=accepted.error_details)

        # Check the new file before it replaces the current backing file
        checked = self.store.load(Dataset(tag=dataset.tag, schema=dataset.schema), source)
        if checked.is_failure():
            logger.warning(f"Rejected {source.name} for dataset '{dataset.tag}'; current data kept")
            return checked

        target = Path(backing_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as e:
            logger.error(f"Copying {source.name} for dataset '{dataset.tag}' failed: {e}")
            return Result.failure_result(NotFoundError(f"Cannot copy source file: {e}", source=str(source)))

        loaded = self.store.load(dataset, target)
        if loaded.is_failure():
            return loaded

        self.controller.record_dataset_load(dataset, ttl_days)
        return loaded

    def restore(self, dataset: Dataset, backing_path: Optional[Union[str, Path]] = None) -> Result[int]:
        """Reload a dataset from its stored backing file at startup."""
        path = Path(backing_path) if backing_path else self.controller.backing_path(dataset.tag)
        if path is None:
            return Result.failure_result(NotFoundError(f"Dataset '{dataset.tag}' was never imported"))
        result = self.store.load(dataset, path)
        if result.is_success():
            dataset.expires_at = self.controller.dataset_expires_at(dataset.tag)
        return result
