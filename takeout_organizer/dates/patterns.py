"""
Filename-based capture date guessing.

Each rule is a regex tried against the basename plus a layout for the
matched text. The layout is a strptime format, or one of the special
layouts 'UNIX' (epoch seconds) and 'UNIXMS' (epoch milliseconds).
If the regex has a capture group, group 1 is parsed, else the whole match.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Set

from ..exceptions import PatternError
from ..models import CustomDatePattern

_DATE = r'(?:20|19|18)\d{2}(?:0[1-9]|1[0-2])[0-3]\d'


@dataclass
class DateRule:
    regex: Pattern
    layout: str


def _rule(regex: str, layout: str) -> DateRule:
    return DateRule(re.compile(regex, re.IGNORECASE), layout)


BUILTIN_RULES: List[DateRule] = [
    # Screenshot_20190919-053857.jpg
    _rule(rf'({_DATE}-\d{{6}})', '%Y%m%d-%H%M%S'),
    # IMG_20190509_154733.jpg
    _rule(rf'({_DATE}_\d{{6}})', '%Y%m%d_%H%M%S'),
    # Screenshot_2019-04-16-11-19-37.jpg
    _rule(r'((?:20|19|18)\d{2}-(?:0[1-9]|1[0-2])-[0-3]\d-\d{2}-\d{2}-\d{2})', '%Y-%m-%d-%H-%M-%S'),
    # signal-2020-10-26-163832.jpg
    _rule(r'((?:20|19|18)\d{2}-(?:0[1-9]|1[0-2])-[0-3]\d-\d{6})', '%Y-%m-%d-%H%M%S'),
    # 201801261147521000.jpg, only the first 14 digits are the timestamp
    _rule(rf'({_DATE}\d{{6}})\d+', '%Y%m%d%H%M%S'),
    # 2016_01_30_11_49_15.mp4
    _rule(r'((?:20|19|18)\d{2}_(?:0[1-9]|1[0-2])_[0-3]\d_\d{2}_\d{2}_\d{2})', '%Y_%m_%d_%H_%M_%S'),
    # WhatsApp: IMG-20201231-WA0001.jpg / VID-20201231-WA0001.mp4
    _rule(r'(?:IMG|VID)-(\d{8})-WA\d+', '%Y%m%d'),
    # Snapchat-1699999999.jpg / Snapchat-1699999999-edited.jpg
    _rule(r'Snapchat-(\d{10})(?!\d)', 'UNIX'),
    # Snapchat-1699999999999.jpg / Snapchat-1699999999999-edited.jpg
    _rule(r'Snapchat-(\d{13})(?!\d)', 'UNIXMS'),
    # PXL_20210102_123456.jpg, PXL_20210102_123456789.jpg
    _rule(r'PXL_(\d{8}_\d{6})\d*', '%Y%m%d_%H%M%S'),
    # IMG_20210102_123456.jpg / VID_20210102_123456.mp4
    _rule(r'(?:IMG|VID)_(\d{8}_\d{6})', '%Y%m%d_%H%M%S'),
]


def parse_with_layout(layout: str, value: str) -> Optional[datetime]:
    """
    Parses value with a strptime layout or UNIX/UNIXMS.
    Naive results are interpreted as local time.
    """
    value = value.strip()
    special = layout.strip().upper()
    try:
        if special == 'UNIX':
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        if special == 'UNIXMS':
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
        dt = datetime.strptime(value, layout)
    except (ValueError, OverflowError, OSError):
        return None
    return dt if dt.tzinfo else dt.astimezone()


def match_target(regex: Pattern, name: str) -> Optional[str]:
    """Group 1 when the regex has groups, else the whole match."""
    m = regex.search(name)
    if m is None:
        return None
    if regex.groups >= 1 and m.group(1) is not None:
        return m.group(1)
    return m.group(0)


def guess_with_rules(name: str, rules: Iterable[DateRule]) -> Optional[datetime]:
    """First rule whose regex matches decides; a failed parse moves on."""
    for rule in rules:
        target = match_target(rule.regex, name)
        if target is None:
            continue
        dt = parse_with_layout(rule.layout, target)
        if dt:
            return dt
    return None


def compile_custom(pattern: CustomDatePattern) -> DateRule:
    if not pattern.regex or not pattern.layout:
        raise PatternError("Both a regex and a layout are required")
    try:
        regex = re.compile(pattern.regex)
    except re.error as e:
        raise PatternError(f"Invalid regex {pattern.regex!r}: {e}") from e
    return DateRule(regex, pattern.layout)


def compile_custom_rules(patterns: Iterable[CustomDatePattern]) -> List[DateRule]:
    rules = []
    for p in patterns:
        try:
            rules.append(compile_custom(p))
        except PatternError as e:
            logging.warning(f"Skipping custom date pattern: {e}")
    return rules


class FilenameDateGuesser:
    """
    Custom rules first, then the built-in list. Excluded basenames are never
    filename-dated.
    """

    def __init__(self, custom: Iterable[CustomDatePattern] = (), exclusions: Optional[Set[str]] = None):
        self.custom_rules = compile_custom_rules(custom)
        self.exclusions = exclusions or set()

    def guess(self, path: Path) -> Optional[datetime]:
        name = path.name
        if name in self.exclusions:
            return None
        dt = guess_with_rules(name, self.custom_rules)
        if dt:
            return dt
        if name in self.exclusions:
            return None
        return guess_with_rules(name, BUILTIN_RULES)
