"""
Coordinate-range parsing and offset mapping.

The annotator reports where an ungapped coding sequence sits on the genome as
``start..end[;start..end...]`` (1-based, inclusive), e.g. ``1..26;715..982``
for a two-exon spliced product. Ranges are held here as half-open 0-based
intervals so that ungapped sequence offsets can be mapped back to genomic
coordinates with simple arithmetic.
"""

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*\.\.\s*(\d+)\s*$")


@dataclass(frozen=True)
class Interval:
    """Half-open 0-based interval [start, end)."""
    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class CoordinateRanges:
    """Ordered sequence of intervals making up one coding region."""
    intervals: Tuple[Interval, ...] = ()

    def __len__(self) -> int:
        """Total number of positions covered by all intervals."""
        return sum(len(interval) for interval in self.intervals)

    def __iter__(self) -> Iterator[Interval]:
        return iter(self.intervals)

    def __bool__(self) -> bool:
        return bool(self.intervals)

    def to_genomic(self, offset: int) -> Optional[int]:
        """Map a 0-based ungapped sequence offset to a 1-based genomic position.

        With ranges ``1..26;715..982`` offset 0 maps to 1, offset 26 to 715
        and offset 30 to 719.

        Args:
            offset: 0-based offset within the ungapped sequence

        Returns:
            1-based genomic coordinate, or None if the offset falls outside
            the ranges
        """
        if offset < 0:
            return None
        remaining = offset
        for interval in self.intervals:
            if remaining < len(interval):
                return interval.start + remaining + 1
            remaining -= len(interval)
        return None

    def __str__(self) -> str:
        return ";".join(f"{iv.start + 1}..{iv.end}" for iv in self.intervals)


def parse_coordinate_ranges(value: Optional[str]) -> CoordinateRanges:
    """Parse a ``start..end[;start..end...]`` string.

    Args:
        value: Range string from the annotator; empty/None gives no ranges

    Returns:
        CoordinateRanges in the order written

    Raises:
        ValueError: If a range is malformed or has end < start
    """
    if value is None:
        return CoordinateRanges()
    value = value.strip()
    if value in ("", ".", "-", "NA"):
        return CoordinateRanges()

    intervals: List[Interval] = []
    for part in value.split(";"):
        if not part.strip():
            continue
        match = RANGE_PATTERN.match(part)
        if not match:
            raise ValueError(f"Invalid coordinate range '{part}' in '{value}'")
        start, end = int(match.group(1)), int(match.group(2))
        if start < 1 or end < start:
            raise ValueError(f"Invalid coordinate range '{part}' in '{value}'")
        intervals.append(Interval(start - 1, end))

    return CoordinateRanges(tuple(intervals))


def aligned_to_ungapped_positions(aligned: str, gap_chars: str = "-") -> List[Optional[int]]:
    """Map each alignment column to its 1-based ungapped position.

    Columns holding a gap in ``aligned`` map to None.

    Args:
        aligned: Aligned sequence
        gap_chars: Characters treated as gaps

    Returns:
        List parallel to ``aligned``
    """
    positions: List[Optional[int]] = []
    ungapped = 0
    for residue in aligned:
        if residue in gap_chars:
            positions.append(None)
        else:
            ungapped += 1
            positions.append(ungapped)
    return positions
