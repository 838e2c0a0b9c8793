from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ParsedData:
    columns: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def file_extension(filename: str) -> str:
    """Return the lower-cased extension without the dot ("" if there is none)."""
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


class FileParserPlugin(ABC):
    name: str = ""
    supported_extensions: list[str] = []

    @abstractmethod
    async def parse(self, file_content: bytes, filename: str) -> ParsedData:
        """Parse file content into header columns and row dicts keyed by header."""

    def detect(self, file_content: bytes, filename: str) -> bool:
        """Return True if this parser can handle the file."""
        return f".{file_extension(filename)}" in self.supported_extensions
