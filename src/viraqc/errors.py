"""
Exception hierarchy and recoverable-warning accumulation for viraqc.

Fatal errors (missing inputs, bad configuration) propagate out of the
pipeline before any output is written. Recoverable problems (a malformed
row, a sample without usable data) are logged and collected in a
``WarningLog`` that travels with the result.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)


class ViraQCError(Exception):
    """Base class for all viraqc errors."""


class MissingInputError(ViraQCError):
    """A required file or column is absent. Fatal."""


class SamplesheetError(MissingInputError):
    """The samplesheet cannot be used (missing column, duplicate IDs). Fatal."""


class ConfigurationError(ViraQCError):
    """The QC configuration cannot be parsed or names an unknown profile. Fatal."""


class PartitionError(ViraQCError):
    """Pass/fail buckets disagree with the ingested sequences. Fatal."""


class MalformedRowError(ViraQCError):
    """A single input row cannot be normalized. Recoverable; the row is dropped.

    Attributes:
        path: File the row came from
        line_number: 1-based line number within the file
    """

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None, line_number: Optional[int] = None):
        self.path = Path(path) if path is not None else None
        self.line_number = line_number
        location = ""
        if self.path is not None:
            location = f"{self.path.name}"
            if line_number is not None:
                location += f":{line_number}"
            location += ": "
        super().__init__(f"{location}{message}")


class InsufficientDataError(ViraQCError):
    """A sample has no usable records. Recorded as a "no data" verdict."""

    def __init__(self, sample_id: str, detail: str = "no usable assembler records"):
        self.sample_id = sample_id
        super().__init__(f"{sample_id}: {detail}")


@dataclass
class WarningLog:
    """Thread-safe accumulator for recoverable errors.

    Attributes:
        entries: Recorded errors in the order they were reported
    """
    entries: List[ViraQCError] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, error: ViraQCError) -> None:
        """Log a recoverable error and keep it for the run summary."""
        logger.warning(str(error))
        with self._lock:
            self.entries.append(error)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(list(self.entries))

    @property
    def messages(self) -> List[str]:
        return [str(entry) for entry in self.entries]

    def of_type(self, error_type: type) -> List[ViraQCError]:
        return [entry for entry in self.entries if isinstance(entry, error_type)]

    def summary(self) -> str:
        """One-line summary of accumulated warnings."""
        if not self.entries:
            return "No warnings"
        malformed = len(self.of_type(MalformedRowError))
        no_data = len(self.of_type(InsufficientDataError))
        other = len(self.entries) - malformed - no_data
        parts = [f"{len(self.entries)} warning(s)"]
        if malformed:
            parts.append(f"{malformed} malformed row(s) skipped")
        if no_data:
            parts.append(f"{no_data} sample(s) without data")
        if other:
            parts.append(f"{other} other")
        return ", ".join(parts)
