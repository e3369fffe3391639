import logging
from collections import defaultdict
from typing import Dict, List, Optional

from ..exceptions import FileHashError
from ..models import PhotoRecord
from ..scanning.hasher import FileHasher


def group_identical(records: List[PhotoRecord], hasher: Optional[FileHasher] = None) -> Dict[str, List[PhotoRecord]]:
    """
    Groups records by exact content.

    Size is the cheap filter: a record alone in its size class is unique
    without hashing. Same-size records are split by full hash, computing it
    when missing. Records whose hash failed each get their own group.
    """
    hasher = hasher or FileHasher()
    by_size: Dict[int, List[PhotoRecord]] = defaultdict(list)
    for rec in records:
        by_size[rec.size_bytes].append(rec)

    groups: Dict[str, List[PhotoRecord]] = {}
    for size, members in by_size.items():
        if len(members) == 1:
            groups[f"{size}bytes"] = members
            continue

        for rec in members:
            if not rec.hash_failed and not rec.content_hash:
                try:
                    rec.content_hash = hasher.full_hash(rec.source_path)
                except FileHashError as e:
                    logging.warning(f"Hash failed during merge, keeping file apart: {e}")
                    rec.hash_failed = True

            if rec.hash_failed:
                key = f"nohash:{size}:{rec.source_path}"
            else:
                key = rec.content_hash
            groups.setdefault(key, []).append(rec)

    return groups


def choose_representative(group: List[PhotoRecord]) -> PhotoRecord:
    """
    Best date confidence wins, then the shortest source path.

    The path length is only a proxy for 'the original name': exports append
    suffixes to copies, but nothing guarantees the shortest is the original.
    """
    return min(group, key=lambda r: (r.date_confidence, len(str(r.source_path))))


def merge_identical(records: List[PhotoRecord], hasher: Optional[FileHasher] = None) -> List[PhotoRecord]:
    """
    Phase 2 of deduplication: re-verifies identity and collapses every group
    of identical content into its representative, which inherits the union
    of album memberships and source paths.
    """
    grouped = group_identical(records, hasher)
    result = []

    for group in grouped.values():
        if len(group) == 1:
            result.append(group[0])
            continue

        best = choose_representative(group)
        albums = set()
        paths = []
        for rec in group:
            albums.update(rec.albums)
            for p in rec.duplicate_paths or [rec.source_path]:
                if p not in paths:
                    paths.append(p)
        best.albums = albums
        best.duplicate_paths = paths
        result.append(best)

    logging.info(f"Duplicates merged: {len(records)} -> {len(result)}")
    return result
