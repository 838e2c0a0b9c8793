from __future__ import annotations

import io
import logging
import warnings

import pandas as pd

from selly_base.plugins import registry
from selly_base.plugins.base import FileParserPlugin, ParsedData
from selly_base.services.errors import FileParseError

logger = logging.getLogger(__name__)


class CsvParser(FileParserPlugin):
    name = "csv"
    supported_extensions = [".csv"]

    async def parse(self, file_content: bytes, filename: str) -> ParsedData:
        try:
            with warnings.catch_warnings():
                # Rows wider than the header would otherwise lose their extra cells
                warnings.simplefilter("error", pd.errors.ParserWarning)
                df = pd.read_csv(
                    io.BytesIO(file_content),
                    dtype=str,
                    keep_default_na=False,
                    index_col=False,
                    skip_blank_lines=True,
                    encoding="utf-8-sig",
                )
        except pd.errors.ParserWarning as exc:
            raise FileParseError(f"CSV parsing errors: {exc}") from exc
        except pd.errors.EmptyDataError as exc:
            raise FileParseError("CSV file is empty") from exc
        except pd.errors.ParserError as exc:
            raise FileParseError(f"CSV parsing errors: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise FileParseError(f"CSV parsing failed: file is not valid UTF-8 ({exc.reason})") from exc

        # Normalise column names, headers often carry stray whitespace
        df.columns = [str(c).strip() for c in df.columns]
        # Short rows leave NaN in the trailing cells
        df = df.fillna("")

        rows = df.to_dict(orient="records")
        logger.info("Parsed %d rows from %s", len(rows), filename)
        return ParsedData(columns=list(df.columns), rows=rows)


def register_plugin() -> None:
    registry.register("parser", CsvParser())
