"""Offline Record Store.

This adapter maintains the in-memory keyed collection of one dataset, loaded
from a delimited export, and writes it back after every status change.

Security Impact:
    - A failed load never leaves a half-built dataset behind
    - Only the status field is ever rewritten; all other values round-trip
    - Expiry is NOT enforced here: the store is mechanically dumb and
      gating is the trust controller's responsibility

Architecture:
    - Operates on an explicit Dataset handle passed to every call
    - Re-loading replaces header and records in a single assignment
    - persist() is a non-atomic whole-file overwrite; callers that need
      durability must wrap it in write-then-rename themselves
"""

import logging
from datetime import date, datetime, time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pandas as pd

from src.adapters.text_table_parser import TextTableParser
from src.domain.license_clock import date_from_excel_day_number
from src.domain.ports import (
    FormatError,
    LookupCoreError,
    NotFoundError,
    PreconditionError,
    Result,
)
from src.domain.records import (
    STATUS_COLUMN,
    Dataset,
    DatasetContents,
    Record,
)

logger = logging.getLogger(__name__)

EXPORT_TIMESTAMP_FORMAT = "%Y%m%d_%H%M"

# Institution row marker in exports that embed their own expiry day number
EMBEDDED_HEADER_MARKER = "codIPS"
EMBEDDED_EXPIRY_CELL = 4


class RecordStore:
    """Load, query, mutate and re-export patient datasets.

    Key Features:
        - Header discovery: skips any preamble before the id-marker line
        - Tolerant rows: short rows get empty trailing fields
        - First match wins on duplicate keys
        - Write-through: every status change rewrites the backing file

    Example Usage:
        ```python
        store = RecordStore()
        rocky = Dataset(tag="rocky", schema=VARIANT_A)
        result = store.load(rocky, "patients.csv")
        if result.is_success():
            record = store.find_by_key(rocky, "456")
            store.update_status(rocky, "456", True)
        ```
    """

    def __init__(
        self,
        parser: Optional[TextTableParser] = None,
        now_fn: Callable[[], datetime] = datetime.now
    ):
        """Initialize record store.

        Parameters:
            parser: Text parser (default: TextTableParser())
            now_fn: Clock used for export file names and load timestamps
        """
        self.parser = parser or TextTableParser()
        self.now_fn = now_fn
        self.adapter_name = "record_store"

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self, dataset: Dataset, path: Optional[Union[str, Path]] = None) -> Result[int]:
        """Load a source file into the dataset.

        The header line is the first line whose normalized form (BOM and
        whitespace stripped, lower-cased) contains the variant's id marker.
        Every later non-blank line becomes one record.

        Parameters:
            dataset: Dataset handle to fill
            path: Source file (defaults to dataset.backing_path)

        Returns:
            Result[int]: Number of records loaded. Failure when the file is
            missing, no header is found, or no record was built; in that case
            the dataset is left empty.
        """
        source = Path(path) if path is not None else dataset.backing_path
        if source is None:
            return Result.failure_result(
                PreconditionError(f"Dataset '{dataset.tag}' has no backing file"),
                error_details={"dataset": dataset.tag}
            )

        try:
            contents = self._read_contents(dataset, source)
        except LookupCoreError as e:
            dataset.clear()
            logger.warning(f"Load of dataset '{dataset.tag}' failed: {e}")
            return Result.failure_result(e, error_details={"dataset": dataset.tag})

        dataset.contents = contents
        dataset.backing_path = source
        dataset.loaded_at = self.now_fn()
        logger.info(f"Dataset '{dataset.tag}' loaded: {len(contents.records)} records from {source.name}")
        return Result.success_result(len(contents.records))

    def _read_contents(self, dataset: Dataset, source: Path) -> DatasetContents:
        lines = self.parser.read_lines(source)
        if not lines:
            raise FormatError(f"Source file is empty: {source}", source=str(source))

        schema = dataset.schema
        header_index = next(
            (index for index, line in enumerate(lines) if schema.is_header_line(line)),
            None
        )
        if header_index is None:
            raise FormatError(
                f"No header line containing '{schema.id_marker}' found in {source.name}",
                source=str(source)
            )

        header_line = lines[header_index]
        delimiter = self.parser.detect_delimiter(header_line)
        source_columns = self.parser.split_row(header_line, delimiter)
        header = schema.build_header(source_columns)
        logger.debug(
            f"Header for '{dataset.tag}' found at line {header_index} "
            f"({len(header)} columns, delimiter {delimiter!r})"
        )

        records: List[Record] = []
        for line in lines[header_index + 1:]:
            if not line.strip():
                continue
            cells = self.parser.split_row(line.strip(), delimiter)
            records.append(schema.build_record(source_columns, cells, header))

        if not records:
            raise FormatError(f"No records found after header in {source.name}", source=str(source))

        return DatasetContents(
            header=tuple(header),
            records=tuple(records),
            delimiter=delimiter,
            id_column=schema.id_column(header),
        )

    # ------------------------------------------------------------------
    # Query and mutation
    # ------------------------------------------------------------------

    def find_by_key(self, dataset: Dataset, record_id: str) -> Optional[Record]:
        """Find a record by trimmed equality on the id column.

        First match wins; duplicate ids in the source resolve to the first
        occurrence.
        """
        id_column = dataset.id_column
        if id_column is None:
            return None
        wanted = str(record_id).strip()
        for record in dataset.contents.records:
            if record.get(id_column, "").strip() == wanted:
                return record
        return None

    def update_status(self, dataset: Dataset, record_id: str, value: bool) -> Result[bool]:
        """Set a record's status and rewrite the backing file.

        An unknown id is a no-op, not an error: the caller may be holding a
        stale reference.

        Returns:
            Result[bool]: True when a record was updated and persisted,
            False when no record matched
        """
        record = self.find_by_key(dataset, record_id)
        if record is None:
            logger.debug(f"update_status: no record '{record_id}' in dataset '{dataset.tag}'")
            return Result.success_result(False)

        record.status = value
        persisted = self.persist(dataset)
        if persisted.is_failure():
            return Result.failure_result(
                persisted.error,
                error_type=persisted.error_type,
                error_details=persisted.error_details
            )
        return Result.success_result(True)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def serialize(self, dataset: Dataset) -> str:
        """Header line followed by one line per record, fields in header order."""
        header = dataset.header
        delimiter = dataset.delimiter
        lines = [self.parser.join_row(header, delimiter)]
        for record in dataset.contents.records:
            lines.append(self.parser.join_row(record.values_in(header), delimiter))
        return "\n".join(lines) + "\n"

    def _write(self, dataset: Dataset, target: Path) -> Result[Path]:
        if not dataset.is_loaded():
            return Result.failure_result(
                PreconditionError(f"Dataset '{dataset.tag}' is not loaded"),
                error_details={"dataset": dataset.tag}
            )
        try:
            with open(target, "w", encoding="utf-8", newline="") as f:
                f.write(self.serialize(dataset))
        except OSError as e:
            logger.error(f"Failed to write dataset '{dataset.tag}' to {target}: {e}")
            return Result.failure_result(
                NotFoundError(f"Cannot write {target}: {e}", source=str(target)),
                error_details={"dataset": dataset.tag}
            )
        return Result.success_result(target)

    def persist(self, dataset: Dataset) -> Result[Path]:
        """Overwrite the backing file with the current collection."""
        if dataset.backing_path is None:
            return Result.failure_result(
                PreconditionError(f"Dataset '{dataset.tag}' has no backing file"),
                error_details={"dataset": dataset.tag}
            )
        result = self._write(dataset, dataset.backing_path)
        if result.is_success():
            logger.debug(f"Dataset '{dataset.tag}' persisted to {dataset.backing_path}")
        return result

    def export_file_name(self, dataset: Dataset, when: Optional[datetime] = None) -> str:
        when = when or self.now_fn()
        return f"{dataset.tag}_{when.strftime(EXPORT_TIMESTAMP_FORMAT)}.csv"

    def export(self, dataset: Dataset, destination_dir: Union[str, Path]) -> Result[Path]:
        """Write the collection to a new timestamped file.

        The name has minute resolution; a second export within the same
        minute overwrites the first.

        Returns:
            Result[Path]: Path of the written file
        """
        directory = Path(destination_dir)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return Result.failure_result(
                NotFoundError(f"Cannot create export directory {directory}: {e}", source=str(directory))
            )
        result = self._write(dataset, directory / self.export_file_name(dataset))
        if result.is_success():
            logger.info(f"Dataset '{dataset.tag}' exported to {result.value}")
        return result

    # ------------------------------------------------------------------
    # Reporting helpers
    # ------------------------------------------------------------------

    def to_dataframe(self, dataset: Dataset) -> pd.DataFrame:
        """Tabular view of the collection (all values as strings)."""
        header = dataset.header
        rows = [record.values_in(header) for record in dataset.contents.records]
        return pd.DataFrame(rows, columns=header, dtype=str)

    def summary(self, dataset: Dataset) -> Dict[str, int]:
        """Counts of pending and handled records."""
        df = self.to_dataframe(dataset)
        if df.empty or STATUS_COLUMN not in df.columns:
            return {"total": 0, "handled": 0, "pending": 0}
        handled = int((df[STATUS_COLUMN].str.strip().str.lower() == "true").sum())
        return {"total": len(df), "handled": handled, "pending": len(df) - handled}

    def embedded_expiry(self, path: Union[str, Path]) -> Optional[date]:
        """Expiry date stamped inside an export, if any.

        Some exports start with an institution row whose fifth cell is a
        spreadsheet day number. Returns None when no such row exists or the
        cell is not a day number within the calendar range.
        """
        rows, _ = self.parser.parse(Path(path).read_bytes())
        for row in rows:
            if len(row) >= EMBEDDED_EXPIRY_CELL + 1 and row[0].strip() != EMBEDDED_HEADER_MARKER:
                try:
                    return date_from_excel_day_number(int(row[EMBEDDED_EXPIRY_CELL].strip()))
                except (ValueError, OverflowError):
                    return None
        return None

    def embedded_expiry_is_past(self, path: Union[str, Path]) -> bool:
        """Whether the embedded expiry has passed; missing or unreadable counts as past."""
        try:
            expiry = self.embedded_expiry(path)
        except OSError:
            return True
        if expiry is None:
            return True
        return datetime.combine(expiry, time.min) < self.now_fn()
