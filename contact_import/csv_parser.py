"""
Parse contact CSV uploads into validated rows.

Handles the usual spreadsheet export damage: byte-order marks, mixed line
endings, trailing whitespace, and unquoted commas inside a free-text column.
A row with too many columns is repaired by folding the extras back into that
column (``company`` by default); anything still misaligned is reported and
skipped.

Usage:
  1. parsed = parse_contacts_csv(text, identifier="phone")
  2. parsed.rows are dicts keyed by the header names
  3. parsed.errors are human-readable, row-numbered messages
"""
from __future__ import annotations

import csv
import re
from dataclasses import dataclass, field
from typing import Optional

IDENTIFIER_ALIASES = {
    "phone": ("phone", "phones", "phone_number", "mobile", "mobile_number"),
    "email": ("email", "emails"),
}

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?\(?[0-9]{1,4}\)?[-\s.]?\(?[0-9]{1,4}\)?[-\s.]?[0-9]{1,9}$")

PREVIEW_CHARS = 100


@dataclass
class ParsedCSV:
    headers: list[str] = field(default_factory=list)
    rows: list[dict[str, str]] = field(default_factory=list)
    # File line number (header is line 1) for each entry in rows
    line_numbers: list[int] = field(default_factory=list)
    identifier_column: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    repaired_lines: list[int] = field(default_factory=list)


def clean_csv_text(text: str) -> str:
    text = text.lstrip("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line.rstrip() for line in text.split("\n")).strip()


def split_csv_line(line: str) -> list[str]:
    values = next(csv.reader([line], skipinitialspace=True), [])
    return [v.strip() for v in values]


def auto_fix_values(values: list[str], headers: list[str], free_text_column: str = "company") -> Optional[list[str]]:
    """
    Merge surplus values into the free-text column, assuming every column
    before and after it is intact. None when the row cannot be repaired.
    """
    expected = len(headers)
    if len(values) <= expected:
        return None
    lowered = [h.lower() for h in headers]
    if free_text_column not in lowered:
        return None
    idx = lowered.index(free_text_column)
    columns_after = expected - idx - 1
    end = len(values) - columns_after
    merged = ", ".join(v for v in values[idx:end])
    return values[:idx] + [merged] + values[end:]


def find_identifier_column(headers: list[str], identifier: str) -> Optional[str]:
    aliases = IDENTIFIER_ALIASES.get(identifier, (identifier,))
    for header in headers:
        if header.strip().lower() in aliases:
            return header
    return None


def is_valid_identifier(value: str, identifier: str) -> bool:
    if identifier == "email":
        return bool(EMAIL_RE.match(value))
    return bool(PHONE_RE.match(re.sub(r"\s", "", value)))


def _mismatch_error(line_no: int, line: str, expected: int, got: int) -> str:
    preview = line if len(line) <= PREVIEW_CHARS else line[:PREVIEW_CHARS] + "..."
    if got > expected:
        suggestion = (
            "Likely cause: Unquoted comma in a field value. Try wrapping fields containing "
            'commas in double quotes (e.g., "Company Name, Role").'
        )
    else:
        suggestion = (
            "Likely cause: Missing values or incorrect delimiter. Ensure all columns have "
            "values or are left empty (e.g., ,,)."
        )
    return (
        f"Row {line_no}: Column count mismatch (expected {expected}, got {got})\n"
        f"  Preview: {preview}\n"
        f"  Suggestion: {suggestion}"
    )


def parse_contacts_csv(text: str, identifier: str = "phone", free_text_column: str = "company") -> ParsedCSV:
    """Parse a CSV export; row numbers in errors are file line numbers (header is line 1)."""
    result = ParsedCSV()
    if identifier not in IDENTIFIER_ALIASES:
        result.errors.append(f"Unsupported identifier '{identifier}'")
        return result

    cleaned = clean_csv_text(text or "")
    if not cleaned:
        result.errors.append("CSV file is empty")
        return result

    lines = cleaned.split("\n")
    result.headers = [h.strip().strip('"') for h in split_csv_line(lines[0])]
    column = find_identifier_column(result.headers, identifier)
    if column is None:
        result.errors.append(f"Required identifier column '{identifier}' not found in CSV headers")
        return result
    result.identifier_column = column

    expected = len(result.headers)
    seen: set[str] = set()
    for line_no, raw in enumerate(lines[1:], start=2):
        line = raw.strip()
        if not line:
            continue
        values = split_csv_line(line)
        if len(values) != expected:
            fixed = auto_fix_values(values, result.headers, free_text_column)
            if fixed is None or len(fixed) != expected:
                result.errors.append(_mismatch_error(line_no, line, expected, len(values)))
                continue
            values = fixed
            result.repaired_lines.append(line_no)

        row = dict(zip(result.headers, values))
        value = (row.get(column) or "").strip()
        if not value:
            result.errors.append(f"Row {line_no}: Missing {identifier}")
            continue
        if not is_valid_identifier(value, identifier):
            result.errors.append(f"Row {line_no}: Invalid {identifier} format: {value}")
            continue
        key = value.lower() if identifier == "email" else re.sub(r"[^\d+]", "", value)
        if key in seen:
            result.errors.append(f"Row {line_no}: Duplicate {identifier}: {value}")
            continue
        seen.add(key)
        row[column] = value
        result.rows.append(row)
        result.line_numbers.append(line_no)
    return result
