from pathlib import Path
from typing import List

from .exceptions import AlbumSelectionError
from .organization.albums import parse_album_selection


class ConsolePrompt:
    """Terminal implementation of the prompt port used by the date review and album selection."""

    def show(self, text: str) -> None:
        print(text)

    def ask(self, label: str) -> str:
        try:
            return input(f"{label}: ")
        except EOFError:
            # Closed stdin reads as a blank answer
            return ""


def prompt_path(port, label: str, default: str) -> Path:
    value = port.ask(f"{label} [{default}]").strip()
    return Path(value or default)


def prompt_album_selection(port, albums: List[str]) -> List[str]:
    """Lists albums and re-asks until the selection parses."""
    if not albums:
        return []

    lines = ["Albums:"]
    lines.extend(f"  {i}. {name}" for i, name in enumerate(albums, 1))
    lines.append("Pick albums in priority order (e.g. 1,3 or Vacation,Family), 'all', or blank for none.")
    port.show("\n".join(lines))

    while True:
        line = port.ask("Album priority")
        try:
            return parse_album_selection(line, albums)
        except AlbumSelectionError as e:
            port.show(f"Invalid selection: {e}")
