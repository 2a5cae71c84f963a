"""Plain text tables for the summaries printed after a deployment."""

from typing import Any, Generator, TextIO
import sys


PADDING = 4


def format_columns(
    headers: list[str], rows: list[list[str]]
) -> Generator[str, None, None]:
    """Yield the header and rows with each column padded to its widest cell."""
    if not headers:
        return
    table = [headers, *([str(cell) for cell in row] for row in rows)]
    widths = [max(len(cell) for cell in column) for column in zip(*table)]
    for row in table:
        line = "".join(
            cell.ljust(width + PADDING) for cell, width in zip(row, widths)
        )
        yield line.rstrip()


class PrintFormatter:
    """Prints records as a table, one column per key."""

    def __init__(self, keys: list[str] | None = None):
        """Initialize PrintFormatter, defaulting to the keys of the first record."""
        self._keys = keys

    def format(self, data: list[dict[str, Any]]) -> Generator[str, None, None]:
        if not data:
            return
        keys = self._keys if self._keys is not None else list(data[0])
        yield from format_columns(
            [key.upper() for key in keys],
            [[str(record.get(key, "")) for key in keys] for record in data],
        )

    def print(self, data: list[dict[str, Any]], file: TextIO = sys.stdout) -> None:
        for line in self.format(data):
            print(line, file=file)
