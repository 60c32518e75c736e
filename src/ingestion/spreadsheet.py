"""Spreadsheet reader that turns the uploaded .xlsx into pipeline rows."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from openpyxl import load_workbook

from src.core.logger import get_logger
from src.pipeline.errors import ValidationError
from src.pipeline.models import Row


logger = get_logger("loomreach.ingestion.spreadsheet")

_HEADER_ALIASES: Dict[str, Sequence[str]] = {
    "recipient_email": ("email", "e-mail", "mail"),
    "recipient_name": ("name", "client-name", "clientname"),
    "target_url": ("website-url", "website", "url", "websiteurl"),
    "recipient_company": ("client-company", "clientcompany", "company"),
    "recipient_title": ("client-designation", "clientdesignation", "designation", "title"),
}
_REQUIRED_FIELDS = ("recipient_email", "recipient_name", "target_url")


def _normalize_header(value: Any) -> str:
    return str(value or "").strip().lower().replace("_", "-").replace(" ", "-")


def _resolve_columns(header: Sequence[Any]) -> Dict[str, int]:
    normalized = [_normalize_header(cell) for cell in header]
    columns: Dict[str, int] = {}
    for field_name, aliases in _HEADER_ALIASES.items():
        for alias in aliases:
            if alias in normalized:
                columns[field_name] = normalized.index(alias)
                break
    return columns


def _cell(values: Sequence[Any], position: Optional[int]) -> str:
    if position is None or position >= len(values):
        return ""
    value = values[position]
    if value is None:
        return ""
    return str(value).strip()


def _normalize_url(value: str) -> str:
    if value and "://" not in value:
        return f"https://{value}"
    return value


def parse_rows(spreadsheet_path: str | Path) -> List[Row]:
    """Read the first worksheet; rows missing email, name or website are skipped."""

    path = Path(spreadsheet_path)
    if not path.exists():
        raise ValidationError(f"spreadsheet_not_found path={path}")

    try:
        workbook = load_workbook(filename=str(path), read_only=True, data_only=True)
    except Exception as exc:
        raise ValidationError(f"spreadsheet_unreadable detail={exc}") from exc

    try:
        sheet = workbook.worksheets[0]
        iterator = sheet.iter_rows(values_only=True)
        header = next(iterator, None)
        if header is None:
            return []
        columns = _resolve_columns(header)
        if any(field_name not in columns for field_name in _REQUIRED_FIELDS):
            raise ValidationError("spreadsheet_missing_required_columns")

        rows: List[Row] = []
        skipped = 0
        for values in iterator:
            email = _cell(values, columns.get("recipient_email"))
            name = _cell(values, columns.get("recipient_name"))
            url = _cell(values, columns.get("target_url"))
            if not (email and name and url):
                skipped += 1
                continue
            rows.append(
                Row(
                    index=len(rows),
                    target_url=_normalize_url(url),
                    recipient_email=email,
                    recipient_name=name,
                    recipient_company=_cell(values, columns.get("recipient_company")),
                    recipient_title=_cell(values, columns.get("recipient_title")),
                )
            )
    finally:
        workbook.close()

    logger.info("spreadsheet_parsed", path=str(path), rows=len(rows), skipped=skipped)
    return rows
