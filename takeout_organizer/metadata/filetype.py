from pathlib import Path
from typing import Optional

from .. import config


def sniff_file_kind(path: Path) -> Optional[str]:
    """
    Identifies the encoded format from the first 12 bytes.

    Returns 'jpeg', 'png', 'heic', 'webp', or None when the header is
    unknown or unreadable.
    """
    try:
        with open(path, 'rb') as f:
            buf = f.read(12)
    except OSError:
        return None
    if len(buf) < 12:
        return None

    if buf[:3] == b'\xff\xd8\xff':
        return 'jpeg'
    if buf[:8] == b'\x89PNG\r\n\x1a\n':
        return 'png'
    if buf[4:8] == b'ftyp' and buf[8:12].decode('ascii', 'replace') in config.HEIF_BRANDS:
        return 'heic'
    if buf[:4] == b'RIFF' and buf[8:12] == b'WEBP':
        return 'webp'
    return None


def preferred_extension(kind: Optional[str]) -> str:
    return config.PREFERRED_EXT.get(kind or '', '')


def normalized_name(path: Path) -> str:
    """
    Basename with its extension corrected when the header disagrees,
    e.g. a PNG exported as 'shot.jpg' becomes 'shot.png'.
    """
    base = path.name
    ext = path.suffix
    kind = sniff_file_kind(path)
    if kind is None or config.EXT_TO_KIND.get(ext.lower()) == kind:
        return base
    pref = preferred_extension(kind)
    return base[:-len(ext)] + pref if ext else base + pref


def matches_extension(path: Path) -> bool:
    """
    False only when sniffing is reliable for the extension and the
    header says otherwise.
    """
    expected = config.SNIFF_CHECKED_EXTS.get(path.suffix.lower())
    if expected is None:
        return True
    kind = sniff_file_kind(path)
    if kind is None:
        return True
    return kind == expected
