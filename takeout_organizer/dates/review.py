"""
Operator-in-the-loop refinement of unresolved capture dates.

The loop is a small state machine:

    RESOLVING -> REVIEWING -> AWAITING_PATTERN -> REAPPLYING -> RESOLVING
                     |                |
                     +-----> DONE <---+

All terminal interaction goes through a PromptPort, so the session can be
driven by a script in tests.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set

from .. import config
from ..exceptions import DateReviewError, PatternError
from ..models import CustomDatePattern, DateConfidence, PhotoRecord
from ..reporting import format_date_review
from .patterns import FilenameDateGuesser, compile_custom, match_target, parse_with_layout
from .resolver import DateProposal, DateResolver, apply_proposals
from .store import save_custom_patterns, save_exclusions


class PromptPort(Protocol):
    def show(self, text: str) -> None: ...

    def ask(self, label: str) -> str: ...


class ReviewState(Enum):
    RESOLVING = "resolving"
    REVIEWING = "reviewing"
    AWAITING_PATTERN = "awaiting_pattern"
    REAPPLYING = "reapplying"
    DONE = "done"


@dataclass
class UnknownGroup:
    key: str
    paths: List[Path] = field(default_factory=list)
    examples: List[str] = field(default_factory=list)


@dataclass
class PreviewEntry:
    name: str
    date: str


@dataclass
class PatternPreview:
    matched: int = 0
    parsed: int = 0
    entries: List[PreviewEntry] = field(default_factory=list)


def name_fingerprint(name: str) -> str:
    """
    Structural key for a filename: digit runs collapse to '#', separators
    to '_', letters are lower-cased. 'IMG_001.jpg' and 'IMG_002.jpg' -> 'img_#_jpg'.
    """
    out = []
    last_digit = False
    for ch in name:
        if ch.isdigit():
            if not last_digit:
                out.append('#')
                last_digit = True
            continue
        last_digit = False
        if ch in ' -_.':
            out.append('_')
        else:
            out.append(ch.lower())
    return ''.join(out)


def group_unknown(proposals: List[DateProposal]) -> List[UnknownGroup]:
    """Largest groups first, then alphabetical."""
    groups: Dict[str, UnknownGroup] = {}
    for p in proposals:
        name = p.record.source_path.name
        key = name_fingerprint(name)
        group = groups.setdefault(key, UnknownGroup(key=key))
        group.paths.append(p.record.source_path)
        if len(group.examples) < config.UNKNOWN_GROUP_EXAMPLES:
            group.examples.append(name)
    return sorted(groups.values(), key=lambda g: (-len(g.paths), g.key))


def preview_pattern(pattern: CustomDatePattern, paths: List[Path]) -> PatternPreview:
    """Dry-runs a candidate pattern. Raises PatternError for a bad regex."""
    rule = compile_custom(pattern)
    preview = PatternPreview()
    for path in paths:
        target = match_target(rule.regex, path.name)
        if target is None:
            continue
        preview.matched += 1
        dt = parse_with_layout(rule.layout, target)
        if dt is None:
            continue
        preview.parsed += 1
        preview.entries.append(PreviewEntry(name=path.name, date=dt.isoformat()))
    return preview


def parse_index_list(text: str, upper: int) -> List[int]:
    """'exclude 1, 3' -> [1, 3]. Raises ValueError for junk or out-of-range numbers."""
    text = text.lower().replace('exclude', '').strip()
    indices = []
    for part in text.split(','):
        part = part.strip()
        if not part:
            continue
        n = int(part)
        if n < 1 or n > upper:
            raise ValueError(f"index out of range: {n}")
        indices.append(n)
    return indices


class DateReviewSession:
    def __init__(self,
                 resolver: DateResolver,
                 port: PromptPort,
                 custom: Optional[List[CustomDatePattern]] = None,
                 exclusions: Optional[Set[str]] = None,
                 patterns_path: Optional[Path] = None,
                 exclusions_path: Optional[Path] = None,
                 show_progress: bool = False):
        self.resolver = resolver
        self.port = port
        self.custom = list(custom or [])
        self.exclusions = set(exclusions or set())
        self.patterns_path = patterns_path
        self.exclusions_path = exclusions_path
        self.show_progress = show_progress
        self.state = ReviewState.RESOLVING
        self.rounds = 0

    def run(self, records: List[PhotoRecord]) -> List[DateProposal]:
        """Resolves dates, asking for patterns until nothing is unknown or the operator stops."""
        proposals: List[DateProposal] = []
        unknown: List[DateProposal] = []
        self.state = ReviewState.RESOLVING

        while self.state != ReviewState.DONE:
            if self.state == ReviewState.RESOLVING:
                proposals = self.resolver.propose_all(records, self.show_progress)
                self.rounds += 1
                self.state = ReviewState.REVIEWING

            elif self.state == ReviewState.REVIEWING:
                unknown = [p for p in proposals if p.confidence == DateConfidence.UNKNOWN]
                if unknown:
                    logging.info(f"{len(unknown)} files have no usable date")
                    self.state = ReviewState.AWAITING_PATTERN
                else:
                    self.state = ReviewState.DONE

            elif self.state == ReviewState.AWAITING_PATTERN:
                if self._prompt_pattern(unknown):
                    self.state = ReviewState.REAPPLYING
                else:
                    self.state = ReviewState.DONE

            elif self.state == ReviewState.REAPPLYING:
                self.resolver.guesser = FilenameDateGuesser(self.custom, self.exclusions)
                self.state = ReviewState.RESOLVING

        return proposals

    def confirm_and_apply(self, proposals: List[DateProposal]):
        """
        Shows the review summary and applies it only after the operator types
        the confirmation word. Nothing is mutated otherwise.
        """
        self.port.show(format_date_review(proposals))
        self.port.show("Review is required before applying date changes.")
        self.port.show(f"Type {config.APPLY_CONFIRMATION} to continue, or anything else to cancel.")
        answer = self.port.ask("Confirmation").strip()
        if answer.upper() != config.APPLY_CONFIRMATION:
            raise DateReviewError("Date review not confirmed")
        apply_proposals(proposals)

    def _show_groups(self, unknown: List[DateProposal]):
        groups = group_unknown(unknown)
        lines = ["Unknown file groups (by name pattern):"]
        for g in groups[:config.UNKNOWN_GROUP_DISPLAY_LIMIT]:
            lines.append(f"  {g.key} ({len(g.paths)} files)")
            lines.extend(f"    {ex}" for ex in g.examples)
        if len(groups) > config.UNKNOWN_GROUP_DISPLAY_LIMIT:
            lines.append(f"  ... {len(groups) - config.UNKNOWN_GROUP_DISPLAY_LIMIT} more groups")
        self.port.show("\n".join(lines))

    def _prompt_pattern(self, unknown: List[DateProposal]) -> bool:
        """Returns True once a pattern has been accepted and saved."""
        paths = [p.record.source_path for p in unknown]
        self.port.show("Unknown date files detected. You can add custom date regex patterns.")
        if self.patterns_path:
            self.port.show(f"Patterns will be saved to {self.patterns_path}")

        while True:
            self._show_groups(unknown)
            self.port.show(
                "Enter a regex that matches only the date portion.\n"
                "If you include a capture group, group 1 will be parsed as the date.\n"
                r"Example regex: (20|19)\d{2}[01]\d[0-3]\d_\d{6}" "\n"
                "Layouts are strptime formats (example: %Y%m%d_%H%M%S), "
                "or UNIX (seconds) / UNIXMS (milliseconds)."
            )
            regex = self.port.ask("Date regex (blank to stop)").strip()
            if not regex:
                return False
            layout = self.port.ask("Time layout for regex match").strip()
            if not layout:
                self.port.show("Layout is required.")
                continue

            candidate = CustomDatePattern(regex=regex, layout=layout)
            try:
                preview = preview_pattern(candidate, paths)
            except PatternError as e:
                self.port.show(str(e))
                continue

            lines = [f"Pattern matched {preview.matched} files, parsed {preview.parsed} dates."]
            if preview.entries:
                lines.append("Preview of parsed dates:")
                lines.extend(f"  {i}. {e.name} -> {e.date}" for i, e in enumerate(preview.entries, 1))
            self.port.show("\n".join(lines))

            if preview.matched == 0 or preview.parsed == 0:
                keep = self.port.ask("Keep this pattern anyway [y/N]").strip().lower()
                if keep not in ("y", "yes"):
                    continue

            decision = self.port.ask("Accept? all / none / exclude 1,2,3").strip().lower()
            if decision == "none":
                continue
            if decision not in ("all", ""):
                try:
                    excluded = parse_index_list(decision, len(preview.entries))
                except ValueError as e:
                    self.port.show(f"Invalid exclude list: {e}")
                    continue
                for idx in excluded:
                    self.exclusions.add(preview.entries[idx - 1].name)
                save_exclusions(self.exclusions_path, self.exclusions)
                logging.info(f"Excluded {len(excluded)} files from filename dating")

            self.custom.append(candidate)
            save_custom_patterns(self.patterns_path, self.custom)
            logging.info(f"Added custom date pattern {regex!r} ({layout})")
            return True
