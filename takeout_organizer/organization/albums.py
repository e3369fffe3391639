import logging
from typing import List

from ..exceptions import AlbumSelectionError
from ..models import PhotoRecord


def list_distinct_albums(records: List[PhotoRecord]) -> List[str]:
    names = set()
    for rec in records:
        names.update(rec.albums)
    return sorted(names)


def parse_album_selection(line: str, albums: List[str]) -> List[str]:
    """
    Turns '1,3', 'Vacation,Family', 'all' or '' into a priority-ordered
    list of album names. Indices are 1-based, names case-insensitive,
    repeats ignored.

    Raises:
        AlbumSelectionError: for an out-of-range index or unknown name.
    """
    line = line.strip()
    if not line:
        return []
    if line.lower() == "all":
        return list(albums)

    by_name = {name.lower(): name for name in albums}
    selected: List[str] = []
    for raw in line.split(","):
        item = raw.strip()
        if not item:
            continue

        if item.isdigit():
            idx = int(item)
            if idx < 1 or idx > len(albums):
                raise AlbumSelectionError(f"Album index out of range: {idx}")
            name = albums[idx - 1]
        else:
            name = by_name.get(item.lower())
            if name is None:
                raise AlbumSelectionError(f"Unknown album name: {item}")

        if name not in selected:
            selected.append(name)
    return selected


def assign_final_albums(records: List[PhotoRecord], selected: List[str]):
    """Each record goes to the first selected album it belongs to, else the library."""
    for rec in records:
        rec.assigned_album = ""
        for name in selected:
            if name in rec.albums:
                rec.assigned_album = name
                break
        logging.debug(f"Album: {rec.assigned_album or '(library)'} <- {rec.source_path}")
