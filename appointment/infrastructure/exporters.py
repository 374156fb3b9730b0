from __future__ import annotations

from typing import Optional, Sequence


class InMemoryReportExporter:
    """Keeps the last report written, for callers that serve it themselves."""

    def __init__(self) -> None:
        self.filename: Optional[str] = None
        self.rows: list[list[Optional[str]]] = []

    def write(self, rows: Sequence[Sequence[Optional[str]]], filename: str) -> None:
        self.rows = [list(row) for row in rows]
        self.filename = filename
