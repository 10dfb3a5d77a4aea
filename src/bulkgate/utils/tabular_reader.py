"""Read delimited text files into a TabularFile."""

import csv
import logging
from pathlib import Path
from typing import Optional

from bulkgate.domain import errors
from bulkgate.domain.entities import TabularFile
from bulkgate.domain.errors import (
    FileTooLargeError,
    InvalidEncodingError,
    NotFoundError,
    UnsupportedFileError,
)

log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".txt")


def read_tabular_file(file_path: str | Path, max_bytes: Optional[int] = None) -> TabularFile:
    """Read a delimited text file with a header row.

    The byte limit is checked against the file size before the file is opened.
    Rows where every cell is blank are dropped.

    Args:
        file_path: Path to the file
        max_bytes: Optional byte limit

    Returns:
        TabularFile with the header row and data rows as lists of strings

    Raises:
        NotFoundError: If the file doesn't exist
        UnsupportedFileError: If the extension is not a delimited text format
        FileTooLargeError: If the file exceeds max_bytes
        InvalidEncodingError: If the file is not UTF-8 text
    """
    path = Path(file_path)
    if not path.exists():
        raise NotFoundError(f"File not found: {file_path}")
    if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileError(errors.unsupported_file(path.name, SUPPORTED_EXTENSIONS))

    size = path.stat().st_size
    if max_bytes is not None and size > max_bytes:
        raise FileTooLargeError(
            errors.file_too_large(size, max_bytes), details={"size": size, "limit": max_bytes}
        )

    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            # Try to detect delimiter
            sample = f.read(4096)
            f.seek(0)
            try:
                delimiter = csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
            except csv.Error:
                delimiter = ","

            reader = csv.reader(f, delimiter=delimiter)
            headers = next(reader, None)
            if headers is None:
                return TabularFile(filename=path.name, size=size, headers=[], rows=[])

            rows = [row for row in reader if any(cell.strip() for cell in row)]
    except UnicodeDecodeError as e:
        raise InvalidEncodingError(errors.invalid_encoding(path.name), details={"reason": e.reason})

    log.debug("Read %d data rows from %s (delimiter %r)", len(rows), path.name, delimiter)
    return TabularFile(
        filename=path.name,
        size=size,
        headers=[h.strip() for h in headers],
        rows=rows,
    )
