"""Delimited Text Parser.

This adapter turns raw export bytes into rows of trimmed string cells. The two
upstream systems export with different encodings and delimiters, and neither
declares which, so both are detected here.

Security Impact:
    - Decoding never raises: the single-byte fallback accepts every byte value
    - Malformed rows are returned as-is, never silently dropped

Architecture:
    - Leaf component with no domain dependencies beyond the error types
    - Column alignment is positional; trailing empty cells are preserved
    - Quoting is not interpreted: upstream exports never quote cells
"""

import logging
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from src.domain.ports import NotFoundError

logger = logging.getLogger(__name__)

PRIMARY_ENCODING = "utf-8"
FALLBACK_ENCODING = "latin-1"

COMMA = ","
SEMICOLON = ";"


class TextTableParser:
    """Parser for loosely-structured delimited text.

    Example Usage:
        ```python
        parser = TextTableParser()
        lines = parser.decode(Path("export.csv").read_bytes())
        delimiter = parser.detect_delimiter(lines[0])
        cells = parser.split_row(lines[1], delimiter)
        ```
    """

    def __init__(self):
        self.adapter_name = "text_table_parser"
        self.last_encoding = PRIMARY_ENCODING

    def decode(self, raw: bytes) -> List[str]:
        """Decode raw bytes into text lines.

        Tries UTF-8 first and falls back to Latin-1, which cannot fail.
        Lines are returned in file order and are not filtered; a trailing
        newline does not produce an extra empty line.

        Parameters:
            raw: File contents

        Returns:
            List[str]: Text lines without line terminators
        """
        try:
            text = raw.decode(PRIMARY_ENCODING)
            self.last_encoding = PRIMARY_ENCODING
        except UnicodeDecodeError:
            text = raw.decode(FALLBACK_ENCODING)
            self.last_encoding = FALLBACK_ENCODING
            logger.debug("Input is not valid UTF-8, decoded as Latin-1")

        if not text:
            return []
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        return lines

    def read_lines(self, path: Union[str, Path]) -> List[str]:
        """Read and decode a file.

        Raises:
            NotFoundError: If the file does not exist or cannot be opened
        """
        source_path = Path(path)
        try:
            raw = source_path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"Source file not found: {source_path}", source=str(source_path))
        except OSError as e:
            raise NotFoundError(f"Source file cannot be read: {source_path} ({e})", source=str(source_path))

        lines = self.decode(raw)
        logger.debug(f"Read {len(lines)} lines from {source_path.name} ({self.last_encoding})")
        return lines

    @staticmethod
    def detect_delimiter(line: str) -> str:
        """Guess the delimiter of a sample line.

        Best-effort heuristic: returns "," on a tie or comma majority,
        otherwise ";".
        """
        return COMMA if line.count(COMMA) >= line.count(SEMICOLON) else SEMICOLON

    @staticmethod
    def split_row(line: str, delimiter: str) -> List[str]:
        """Split a line and trim every cell, keeping empty trailing cells."""
        return [cell.strip() for cell in line.split(delimiter)]

    @staticmethod
    def join_row(cells: Sequence[str], delimiter: str) -> str:
        return delimiter.join(cells)

    def parse(self, raw: bytes) -> Tuple[List[List[str]], str]:
        """Decode and split a whole file, detecting the delimiter from the first line.

        Returns:
            Tuple of (rows, delimiter)
        """
        lines = self.decode(raw)
        if not lines:
            return [], COMMA
        delimiter = self.detect_delimiter(lines[0])
        return [self.split_row(line, delimiter) for line in lines], delimiter
