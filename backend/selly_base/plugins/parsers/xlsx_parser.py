from __future__ import annotations

import io
import logging
import math
from datetime import date, datetime
from typing import Any

import pandas as pd

from selly_base.plugins import registry
from selly_base.plugins.base import FileParserPlugin, ParsedData
from selly_base.services.errors import FileParseError

logger = logging.getLogger(__name__)

INSTRUCTIONS_SHEET = "instructions"


def cell_text(value: Any) -> str:
    """Render a worksheet cell the way it would read in a CSV export."""
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        if (value.hour, value.minute, value.second, value.microsecond) == (0, 0, 0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class XlsxParser(FileParserPlugin):
    name = "xlsx"
    supported_extensions = [".xlsx"]

    async def parse(self, file_content: bytes, filename: str) -> ParsedData:
        try:
            sheets = pd.read_excel(
                io.BytesIO(file_content),
                sheet_name=None,
                header=None,
                dtype=object,
                engine="openpyxl",
            )
        except Exception as exc:
            # openpyxl reports corrupt workbooks through several unrelated exception types
            raise FileParseError(f"Excel parsing failed: {exc}") from exc

        data_sheets = [
            name for name in sheets if str(name).strip().lower() != INSTRUCTIONS_SHEET
        ]
        if not data_sheets:
            raise FileParseError("No data sheets found in the Excel file")

        df = sheets[data_sheets[0]].dropna(how="all")
        if df.empty:
            raise FileParseError("Excel file is empty")

        values = df.values.tolist()
        columns = [cell_text(h).strip() for h in values[0]]
        rows = [
            {col: cell_text(row[i]) if i < len(row) else "" for i, col in enumerate(columns)}
            for row in values[1:]
        ]
        logger.info(
            "Parsed %d rows from sheet '%s' of %s", len(rows), data_sheets[0], filename
        )
        return ParsedData(columns=columns, rows=rows)


def register_plugin() -> None:
    registry.register("parser", XlsxParser())
