"""Header resolution and cell coercion for uploaded rows."""

import logging
import re
import unicodedata
from collections.abc import Mapping
from typing import Any, Optional

from bulkgate.domain import errors
from bulkgate.domain.entities import (
    IssueCategory,
    IssueSeverity,
    NormalizationResult,
    SourceRecord,
    TabularFile,
    ValidationIssue,
)
from bulkgate.domain.errors import EmptyFileError, FileTooLargeError, SchemaError, TooManyRowsError
from bulkgate.domain.fields import FieldKind
from bulkgate.domain.settings import ImportSettings
from bulkgate.utils.date_parser import parse_date
from bulkgate.utils.number_parser import parse_integer, parse_numeric_identifier

log = logging.getLogger(__name__)

_SEPARATOR_RUN = re.compile(r"[\s_]+")


def normalize_header(header: str) -> str:
    """Lowercase, strip diacritics and collapse whitespace to single underscores.

    >>> normalize_header("  Razón   Social ")
    'razon_social'
    """
    decomposed = unicodedata.normalize("NFKD", str(header))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _SEPARATOR_RUN.sub("_", stripped.lower().strip()).strip("_")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


class HeaderResolver:
    """Resolve header text to canonical fields through a synonym table.

    Every synonym (and every canonical name itself) is normalized and split into
    tokens. A header matches a synonym when the synonym's tokens appear as a
    contiguous run of the header's tokens. Candidates are tried longest first,
    so "fecha emision certificado extranjero" beats "fecha emision".
    """

    def __init__(self, synonyms: dict[str, list[str]]):
        candidates: list[tuple[int, int, tuple[str, ...], str]] = []
        for order, (canonical, variants) in enumerate(synonyms.items()):
            seen = set()
            for variant in [canonical, *variants]:
                normalized = normalize_header(variant)
                if not normalized or normalized in seen:
                    continue
                seen.add(normalized)
                candidates.append((-len(normalized), order, tuple(normalized.split("_")), canonical))
        candidates.sort(key=lambda c: (c[0], c[1]))
        self._candidates = [(tokens, canonical) for _, _, tokens, canonical in candidates]

    def resolve(self, header: str) -> Optional[str]:
        """Return the canonical field for a header, or None when nothing matches."""
        normalized = normalize_header(header)
        if not normalized:
            return None
        header_tokens = tuple(normalized.split("_"))
        for tokens, canonical in self._candidates:
            if _contains_run(header_tokens, tokens):
                return canonical
        return None


def _contains_run(haystack: tuple[str, ...], needle: tuple[str, ...]) -> bool:
    width = len(needle)
    if width > len(haystack):
        return False
    return any(haystack[i : i + width] == needle for i in range(len(haystack) - width + 1))


class Normalizer:
    """Turn a header row plus data rows into canonical-field source records."""

    def __init__(self, settings: Optional[ImportSettings] = None):
        """Initialize normalizer.

        Args:
            settings: Import settings (defaults used when omitted)
        """
        self.settings = settings or ImportSettings()
        self.resolver = HeaderResolver(self.settings.synonyms)

    def check_limits(self, file: TabularFile) -> None:
        """Reject a file that is too large, too long or empty before reading any row.

        Raises:
            FileTooLargeError: If the byte size exceeds the limit
            TooManyRowsError: If the row count exceeds the limit
            EmptyFileError: If there are no data rows
        """
        if file.size > self.settings.max_file_bytes:
            raise FileTooLargeError(
                errors.file_too_large(file.size, self.settings.max_file_bytes),
                details={"size": file.size, "limit": self.settings.max_file_bytes},
            )
        if len(file.rows) > self.settings.max_rows:
            raise TooManyRowsError(
                errors.too_many_rows(len(file.rows), self.settings.max_rows),
                details={"rows": len(file.rows), "limit": self.settings.max_rows},
            )
        if not file.rows:
            raise EmptyFileError(errors.empty_file(file.filename))

    def resolve_headers(
        self, headers: list[str]
    ) -> tuple[dict[int, str], list[str], list[ValidationIssue]]:
        """Map header positions to canonical fields.

        Returns:
            Tuple of (position -> canonical field, unmapped header names, warnings)
        """
        by_position: dict[int, str] = {}
        claimed: dict[str, str] = {}
        unmapped: list[str] = []
        issues: list[ValidationIssue] = []

        for position, header in enumerate(headers):
            if _is_blank(header):
                continue
            canonical = self.resolver.resolve(header)
            if canonical is None:
                unmapped.append(header)
                issues.append(
                    ValidationIssue(
                        category=IssueCategory.SCHEMA,
                        severity=IssueSeverity.WARNING,
                        code="UNMAPPED_COLUMN",
                        message=errors.unmapped_column(header),
                        field=header,
                    )
                )
                continue
            if canonical in claimed:
                unmapped.append(header)
                issues.append(
                    ValidationIssue(
                        category=IssueCategory.SCHEMA,
                        severity=IssueSeverity.WARNING,
                        code="UNMAPPED_COLUMN",
                        message=errors.duplicate_column(header, canonical, claimed[canonical]),
                        field=header,
                    )
                )
                continue
            claimed[canonical] = header
            by_position[position] = canonical

        return by_position, unmapped, issues

    def coerce(self, canonical: str, value: Any) -> Any:
        """Coerce one non-blank cell according to the field's declared kind.

        Raises:
            ValueError: If the value cannot be coerced
        """
        kind = self.settings.field_kinds.get(canonical, FieldKind.TEXT)
        if kind == FieldKind.DATE:
            return parse_date(value)
        if kind == FieldKind.IDENTIFIER:
            return parse_numeric_identifier(value)
        if kind == FieldKind.INTEGER:
            return parse_integer(value)
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value).strip()

    def normalize(self, file: TabularFile) -> NormalizationResult:
        """Normalize a tabular file into source records.

        Args:
            file: Header row, data rows and byte size of the upload

        Returns:
            NormalizationResult with one record per non-blank row, holding only
            canonical fields that had a value

        Raises:
            FormatError: If the file breaks a size/row limit or has no data rows
            SchemaError: If a required canonical column is missing
        """
        self.check_limits(file)

        by_position, unmapped, issues = self.resolve_headers(file.headers)
        header_mapping = {file.headers[pos]: canonical for pos, canonical in by_position.items()}

        missing = [col for col in self.settings.required_columns if col not in header_mapping.values()]
        if missing:
            raise SchemaError(errors.missing_columns(missing), details={"missing": missing})

        records: list[SourceRecord] = []
        for index, row in enumerate(file.rows):
            row_number = index + 2  # Header is row 1
            values: dict[str, Any] = {}
            for position, canonical in by_position.items():
                header = file.headers[position]
                if isinstance(row, Mapping):
                    raw = row.get(header)
                else:
                    raw = row[position] if position < len(row) else None
                if _is_blank(raw):
                    continue
                try:
                    values[canonical] = self.coerce(canonical, raw)
                except ValueError as e:
                    issues.append(
                        ValidationIssue(
                            category=IssueCategory.ROW,
                            severity=IssueSeverity.WARNING,
                            code="INVALID_VALUE",
                            message=errors.invalid_value(row_number, canonical, raw, str(e)),
                            field=canonical,
                            row_number=row_number,
                        )
                    )
            if values:
                records.append(SourceRecord(row_number=row_number, values=values, header_mapping=header_mapping))

        if not records:
            raise EmptyFileError(errors.empty_file(file.filename))

        log.info(
            "Normalized %d rows from %s (%d columns mapped, %d unmapped)",
            len(records),
            file.filename,
            len(header_mapping),
            len(unmapped),
        )
        return NormalizationResult(
            records=records,
            header_mapping=header_mapping,
            unmapped_headers=unmapped,
            issues=issues,
        )
