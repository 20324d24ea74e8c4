"""CSV export connector.

Turns a submission snapshot into CSV text and writes it to ``path`` (or just
keeps it in ``last_csv`` when no path is configured).

Repeatable sections are handled one of two ways:

- ``flatten`` (default): one row; each section becomes a single column whose
  cell joins instance values with "; " and instances with " | ".
- ``separate``: one row per instance; section fields become
  ``section.field`` columns and page values repeat on every row.

Usage:
    >>> connector = CSVExportConnector()
    >>> connector.to_csv({"name": "Ada", "items": [{"sku": "A1"}, {"sku": "B2"}]})
    'name,items\\r\\nAda,A1 | B2\\r\\n'
"""

import csv
import io
import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from dateutil import parser as date_parser

from formruntime.connectors.base import BaseConnector
from formruntime.expressions import to_display_string
from formruntime.submission import SubmitResult
from formruntime.types import FileHandle

logger = logging.getLogger(__name__)

DATE_FORMATS = {
    "ISO": "{d.year:04d}-{d.month:02d}-{d.day:02d}",
    "US": "{d.month}/{d.day}/{d.year}",
    "EU": "{d.day}/{d.month}/{d.year}",
}

REPEATABLE_MODES = ("flatten", "separate")

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class CSVExportConnector(BaseConnector):
    """Export submissions as CSV.

    Args:
        path: File to write; None keeps the output in memory only
        field_mapping: Column header overrides keyed by field id
        date_format: "ISO", "US" or "EU"
        handle_repeatable: "flatten" or "separate"
        append: Append rows to an existing file instead of replacing it
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        field_mapping: Optional[Mapping[str, str]] = None,
        date_format: str = "ISO",
        handle_repeatable: str = "flatten",
        append: bool = False,
        encoding: str = "utf-8",
    ):
        if date_format not in DATE_FORMATS:
            raise ValueError(f"Unknown date format '{date_format}', expected one of {sorted(DATE_FORMATS)}")
        if handle_repeatable not in REPEATABLE_MODES:
            raise ValueError(f"Unknown repeatable mode '{handle_repeatable}', expected one of {REPEATABLE_MODES}")
        super().__init__({
            "path": str(path) if path else None,
            "dateFormat": date_format,
            "handleRepeatable": handle_repeatable,
        })
        self.path = Path(path) if path else None
        self.field_mapping = dict(field_mapping or {})
        self.date_format = date_format
        self.handle_repeatable = handle_repeatable
        self.append = append
        self.encoding = encoding
        self.last_csv: Optional[str] = None

    async def submit(self, data: Dict[str, Any]) -> SubmitResult:
        checked = await self.validate(data)
        if not checked["valid"]:
            return SubmitResult(success=False, message=checked["errors"][0]["message"])
        try:
            text = self.to_csv(data)
            if self.path is not None:
                self._write(text)
        except (OSError, csv.Error) as exc:
            logger.warning("CSV export failed: %s", exc)
            return SubmitResult(success=False, message=f"Error generating CSV: {exc}")
        self.last_csv = text
        target = str(self.path) if self.path is not None else None
        logger.info("Exported submission as CSV%s", f" to {target}" if target else "")
        return SubmitResult(success=True, message="CSV file exported successfully", id=target)

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        mode = "w"
        if self.append and self.path.exists() and self.path.stat().st_size > 0:
            # Header already present; keep only the data rows
            text = text.split("\r\n", 1)[1] if "\r\n" in text else ""
            mode = "a"
        with self.path.open(mode, encoding=self.encoding, newline="") as fh:
            fh.write(text)

    def to_csv(self, data: Mapping[str, Any]) -> str:
        """Render one submission as CSV text (header row first)."""
        columns, rows = self._table(data)
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow([self.field_mapping.get(c, c) for c in columns])
        for row in rows:
            writer.writerow([row.get(c, "") for c in columns])
        return buffer.getvalue()

    def _table(self, data: Mapping[str, Any]):
        scalar_keys = [k for k, v in data.items() if not _is_section(v)]
        section_keys = [k for k, v in data.items() if _is_section(v)]
        base = {k: self.format_value(data[k]) for k in scalar_keys}

        if self.handle_repeatable == "flatten":
            row = dict(base)
            for key in section_keys:
                row[key] = " | ".join(
                    "; ".join(self.format_value(v) for v in instance.values()) for instance in data[key]
                )
            return list(data.keys()), [row]

        columns: List[str] = list(scalar_keys)
        for key in section_keys:
            for instance in data[key]:
                for field_id in instance:
                    column = f"{key}.{field_id}"
                    if column not in columns:
                        columns.append(column)

        rows: List[Dict[str, str]] = []
        for key in section_keys:
            for instance in data[key]:
                row = dict(base)
                row.update({f"{key}.{fid}": self.format_value(v) for fid, v in instance.items()})
                rows.append(row)
        return columns, rows or [base]

    def format_value(self, value: Any) -> str:
        """Cell text for one value."""
        if value is None:
            return ""
        if isinstance(value, (date, datetime)):
            return self.format_date(value)
        if isinstance(value, FileHandle):
            return value.name
        if isinstance(value, str) and _ISO_DATE_RE.match(value) and self.date_format != "ISO":
            return self.format_date(value)
        if isinstance(value, (list, tuple)):
            return ", ".join(self.format_value(v) for v in value)
        return to_display_string(value)

    def format_date(self, value: Union[date, datetime, str]) -> str:
        if isinstance(value, str):
            try:
                value = date_parser.isoparse(value)
            except ValueError:
                return value
        return DATE_FORMATS[self.date_format].format(d=value)


def _is_section(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, Mapping) for item in value) and bool(value)


__all__ = [
    "CSVExportConnector",
    "DATE_FORMATS",
]
