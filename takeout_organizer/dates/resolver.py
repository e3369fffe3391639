import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from .. import config
from ..exceptions import SidecarParseError
from ..metadata.extract import EmbeddedDateReader
from ..metadata.sidecar import SidecarMetadata, parse_sidecar, sidecar_timestamp
from ..models import DateConfidence, PhotoRecord
from .patterns import FilenameDateGuesser


@dataclass
class DateProposal:
    record: PhotoRecord
    sidecar_time: Optional[datetime] = None
    filename_time: Optional[datetime] = None
    embedded_time: Optional[datetime] = None
    proposed: Optional[datetime] = None
    confidence: DateConfidence = DateConfidence.UNKNOWN
    sidecar: Optional[SidecarMetadata] = None

    @property
    def is_override(self) -> bool:
        """Filename date chosen over a sidecar date."""
        return self.sidecar_time is not None and self.confidence == DateConfidence.FILENAME


def is_plausible(dt: datetime, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now()
    return config.MIN_PLAUSIBLE_YEAR <= dt.year <= now.year + 1


def choose_best_date(sidecar_time: Optional[datetime],
                     filename_time: Optional[datetime],
                     embedded_time: Optional[datetime],
                     now: Optional[datetime] = None) -> Tuple[Optional[datetime], DateConfidence]:
    """
    Sidecar > filename > embedded, except that an earlier, plausible
    filename date beats the sidecar: exports often re-stamp the sidecar with
    the upload time while the filename keeps the capture time.
    """
    if sidecar_time and filename_time:
        if filename_time < sidecar_time and is_plausible(filename_time, now):
            return filename_time, DateConfidence.FILENAME
        return sidecar_time, DateConfidence.SIDECAR
    if sidecar_time:
        return sidecar_time, DateConfidence.SIDECAR
    if filename_time:
        return filename_time, DateConfidence.FILENAME
    if embedded_time:
        return embedded_time, DateConfidence.EMBEDDED
    return None, DateConfidence.UNKNOWN


class DateResolver:
    """
    Builds a DateProposal per record. Sidecars and embedded tags are read
    once per path and reused across review rounds; only filename guessing
    changes when the operator adds patterns.
    """

    def __init__(self,
                 guesser: FilenameDateGuesser,
                 embedded: Optional[EmbeddedDateReader] = None,
                 now: Optional[datetime] = None):
        self.guesser = guesser
        self.embedded = embedded or EmbeddedDateReader(exiftool_available=False)
        self.now = now
        self._sidecars: Dict[Path, Optional[SidecarMetadata]] = {}
        self._embedded: Dict[Path, Optional[datetime]] = {}

    def propose(self, record: PhotoRecord) -> DateProposal:
        sidecar = self._load_sidecar(record.sidecar_path)
        sidecar_time = sidecar_timestamp(sidecar) if sidecar else None
        filename_time = self.guesser.guess(record.source_path)

        embedded_time = None
        # exiftool is slow; only consult it when nothing better exists
        if sidecar_time is None and filename_time is None:
            embedded_time = self._load_embedded(record.source_path)

        proposed, confidence = choose_best_date(sidecar_time, filename_time, embedded_time, self.now)
        return DateProposal(
            record=record,
            sidecar_time=sidecar_time,
            filename_time=filename_time,
            embedded_time=embedded_time,
            proposed=proposed,
            confidence=confidence,
            sidecar=sidecar,
        )

    def propose_all(self, records: List[PhotoRecord], show_progress: bool = False) -> List[DateProposal]:
        return [self.propose(r) for r in tqdm(records, desc="Analyzing dates", disable=not show_progress)]

    def _load_sidecar(self, path: Optional[Path]) -> Optional[SidecarMetadata]:
        if path is None:
            return None
        if path not in self._sidecars:
            try:
                self._sidecars[path] = parse_sidecar(path)
            except SidecarParseError as e:
                logging.warning(str(e))
                self._sidecars[path] = None
        return self._sidecars[path]

    def _load_embedded(self, path: Path) -> Optional[datetime]:
        if path not in self._embedded:
            self._embedded[path] = self.embedded.read_capture_date(path)
        return self._embedded[path]


def apply_proposals(proposals: List[DateProposal]):
    """Writes resolved dates and recovered sidecar metadata into the records."""
    for p in proposals:
        rec = p.record
        rec.captured_at = p.proposed
        rec.date_confidence = p.confidence
        if p.sidecar is not None:
            rec.metadata = p.sidecar.descriptive
