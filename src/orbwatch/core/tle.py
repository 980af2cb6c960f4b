"""Element set (TLE) parsing and validation.

This module turns raw two-line element text into immutable ``ElementSet``
records. Propagation constants are derived once, at parse time, by the sgp4
library; malformed records are rejected with a typed ``ParseError``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, NamedTuple

from sgp4.api import Satrec, WGS72

from orbwatch.utils.constants import EARTH_MU_KM3_S2, EARTH_RADIUS_KM

logger = logging.getLogger(__name__)

TLE_LINE_LENGTH = 69
UNKNOWN_NAME = "UNKNOWN"
USER_SATELLITE_NAME = "USER SATELLITE"

# Alpha-5 catalog numbers: A=10 ... Z=33, skipping I and O.
_ALPHA5_LETTERS = "ABCDEFGHJKLMNPQRSTUVWXYZ"


class ParseErrorKind(Enum):
    """Why an element set was rejected."""

    MALFORMED = "malformed"
    OUT_OF_RANGE = "out_of_range"


class ParseError(ValueError):
    """Raised when element set text cannot be turned into an ``ElementSet``.

    Attributes:
        kind: ``MALFORMED`` for structural problems, ``OUT_OF_RANGE`` when a
            decoded physical quantity is not physically valid.
    """

    def __init__(self, message: str, kind: ParseErrorKind = ParseErrorKind.MALFORMED) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class ElementSet:
    """A parsed, validated two-line element set.

    Angles are stored in radians; conversion to degrees is left to callers
    presenting the values.

    Attributes:
        name: Object name (line 0, if provided).
        line1: Raw line 1.
        line2: Raw line 2.
        norad_id: Catalog number (Alpha-5 numbers are decoded).
        epoch: Epoch as a UTC datetime.
        inclination_rad: Orbital inclination.
        raan_rad: Right ascension of the ascending node.
        eccentricity: Orbital eccentricity (dimensionless).
        arg_perigee_rad: Argument of perigee.
        mean_anomaly_rad: Mean anomaly.
        mean_motion_rad_per_min: Kozai mean motion.
        bstar: BSTAR drag term.
        satrec: sgp4 record holding the propagation constants.
    """

    name: str
    line1: str
    line2: str
    norad_id: int
    epoch: datetime
    inclination_rad: float
    raan_rad: float
    eccentricity: float
    arg_perigee_rad: float
    mean_anomaly_rad: float
    mean_motion_rad_per_min: float
    bstar: float
    satrec: Satrec = field(repr=False, compare=False)

    @classmethod
    def from_lines(cls, line1: str, line2: str, name: str = "") -> ElementSet:
        """Parse an element set from its two data lines.

        Args:
            line1: Line 1 (at least 69 characters, starting with ``"1 "``).
            line2: Line 2 (at least 69 characters, starting with ``"2 "``).
            name: Optional object name.

        Returns:
            A parsed ElementSet.

        Raises:
            ParseError: If a line is malformed or an element is out of range.
        """
        line1 = line1.strip()
        line2 = line2.strip()

        if len(line1) < TLE_LINE_LENGTH or not line1.startswith("1 "):
            raise ParseError(f"Invalid TLE line 1: {line1!r}")
        if len(line2) < TLE_LINE_LENGTH or not line2.startswith("2 "):
            raise ParseError(f"Invalid TLE line 2: {line2!r}")

        line1 = line1[:TLE_LINE_LENGTH]
        line2 = line2[:TLE_LINE_LENGTH]

        try:
            norad_id = _parse_catalog_number(line1[2:7])
            year = int(line1[18:20])
            day_of_year = float(line1[20:32])
            inclination_deg = float(line2[8:16])
            float(line2[17:25])
            eccentricity = _parse_implied_decimal(line2[26:33])
            float(line2[34:42])
            float(line2[43:51])
            mean_motion = float(line2[52:63])
        except ValueError as exc:
            raise ParseError(f"Non-numeric element field: {exc}") from exc

        if not 0.0 <= inclination_deg <= 180.0:
            raise ParseError(
                f"Inclination {inclination_deg} deg out of range for NORAD {norad_id}",
                ParseErrorKind.OUT_OF_RANGE,
            )
        if not 0.0 <= eccentricity < 1.0:
            raise ParseError(
                f"Eccentricity {eccentricity} out of range for NORAD {norad_id}",
                ParseErrorKind.OUT_OF_RANGE,
            )
        if not mean_motion > 0.0:
            raise ParseError(
                f"Mean motion {mean_motion} rev/day out of range for NORAD {norad_id}",
                ParseErrorKind.OUT_OF_RANGE,
            )
        if not 1.0 <= day_of_year < 367.0:
            raise ParseError(f"Epoch day {day_of_year} out of range for NORAD {norad_id}")

        try:
            sat = Satrec.twoline2rv(line1, line2, WGS72)
        except (ValueError, RuntimeError) as exc:
            raise ParseError(f"sgp4 rejected NORAD {norad_id}: {exc}") from exc

        if sat.error != 0:
            raise ParseError(
                f"sgp4 initialisation failed for NORAD {norad_id}: error code {sat.error}",
                ParseErrorKind.OUT_OF_RANGE,
            )

        year = year + 2000 if year < 57 else year + 1900
        epoch = datetime(year, 1, 1, tzinfo=timezone.utc) + timedelta(days=day_of_year - 1)

        logger.debug("Parsed element set for NORAD %d (epoch %s)", norad_id, epoch.isoformat())

        return cls(
            name=_clean_name(name),
            line1=line1,
            line2=line2,
            norad_id=norad_id,
            epoch=epoch,
            inclination_rad=sat.inclo,
            raan_rad=sat.nodeo,
            eccentricity=sat.ecco,
            arg_perigee_rad=sat.argpo,
            mean_anomaly_rad=sat.mo,
            mean_motion_rad_per_min=sat.no_kozai,
            bstar=sat.bstar,
            satrec=sat,
        )

    @property
    def mean_motion_rev_per_day(self) -> float:
        return self.mean_motion_rad_per_min * 1440.0 / (2.0 * math.pi)

    @property
    def period_minutes(self) -> float:
        return 2.0 * math.pi / self.mean_motion_rad_per_min

    @property
    def semi_major_axis_km(self) -> float:
        n_rad_per_sec = self.mean_motion_rad_per_min / 60.0
        return (EARTH_MU_KM3_S2 / n_rad_per_sec**2) ** (1.0 / 3.0)

    @property
    def perigee_altitude_km(self) -> float:
        return self.semi_major_axis_km * (1.0 - self.eccentricity) - EARTH_RADIUS_KM

    @property
    def apogee_altitude_km(self) -> float:
        return self.semi_major_axis_km * (1.0 + self.eccentricity) - EARTH_RADIUS_KM

    def __str__(self) -> str:
        header = f"0 {self.name}\n" if self.name else ""
        return f"{header}{self.line1}\n{self.line2}"


class BatchIngest(NamedTuple):
    """Outcome of ingesting a multi-record catalog."""

    valid_count: int
    skipped_count: int
    records: list[ElementSet]


def ingest(name: str, line1: str, line2: str) -> ElementSet:
    """Validate one record and build its ElementSet.

    Raises:
        ParseError: If the record is malformed or out of range.
    """
    return ElementSet.from_lines(line1, line2, name=name)


def ingest_batch(raw_text: str) -> BatchIngest:
    """Parse every record in a catalog, skipping the ones that are corrupt.

    A record is a line starting with ``"1 "`` immediately followed by one
    starting with ``"2 "``. The line before it is the name unless it is
    itself a data line. A line 1 without its line 2 counts as skipped;
    anything else that is not part of a record is ignored.

    Args:
        raw_text: Catalog text in 2-line or 3-line format.

    Returns:
        BatchIngest with the number of valid and skipped records and the
        parsed records in input order.
    """
    lines = [l.strip() for l in raw_text.splitlines() if l.strip()]
    records: list[ElementSet] = []
    skipped = 0
    i = 0

    while i < len(lines):
        if not lines[i].startswith("1 "):
            i += 1
            continue

        if i + 1 >= len(lines) or not lines[i + 1].startswith("2 "):
            logger.warning("Skipping record at line %d: line 1 without line 2", i)
            skipped += 1
            i += 1
            continue

        name = UNKNOWN_NAME
        if i > 0 and not _is_data_line(lines[i - 1]):
            name = lines[i - 1]

        try:
            records.append(ElementSet.from_lines(lines[i], lines[i + 1], name=name))
        except ParseError as exc:
            logger.warning("Skipping record %r (%s): %s", name, exc.kind.value, exc)
            skipped += 1
        i += 2

    logger.debug("Ingested %d element sets, skipped %d", len(records), skipped)
    return BatchIngest(valid_count=len(records), skipped_count=skipped, records=records)


def parse_tle(text: str) -> list[ElementSet]:
    """Parse one or more element sets from text, dropping corrupt records."""
    return ingest_batch(text).records


def parse_user_input(text: str) -> ElementSet:
    """Validate pasted text describing a single object.

    The name is the line preceding line 1, or ``"USER SATELLITE"``.

    Raises:
        ParseError: With a message suitable for showing to the user.
    """
    if not text or not text.strip():
        raise ParseError("Please provide TLE data.")

    lines = [l.strip() for l in text.splitlines() if l.strip()]
    if len(lines) < 2:
        raise ParseError("TLE data must contain at least 2 lines (Line 1 and Line 2).")

    line1_index = next((i for i, l in enumerate(lines) if l.startswith("1 ")), None)
    if line1_index is None:
        raise ParseError('TLE Line 1 not found. Line 1 must start with "1 " followed by catalog number.')
    if line1_index + 1 >= len(lines):
        raise ParseError("TLE Line 2 is missing. Line 2 must follow Line 1.")

    line1 = lines[line1_index]
    line2 = lines[line1_index + 1]
    if not line2.startswith("2 "):
        raise ParseError('TLE Line 2 is invalid. Line 2 must start with "2 " followed by catalog number.')
    if len(line1) < TLE_LINE_LENGTH:
        raise ParseError("TLE Line 1 is too short. Standard TLE Line 1 should be 69 characters.")
    if len(line2) < TLE_LINE_LENGTH:
        raise ParseError("TLE Line 2 is too short. Standard TLE Line 2 should be 69 characters.")

    name = USER_SATELLITE_NAME
    if line1_index > 0 and not _is_data_line(lines[line1_index - 1]):
        name = lines[line1_index - 1]

    return ElementSet.from_lines(line1, line2, name=name)


def filter_stale(
    element_sets: Iterable[ElementSet],
    max_age_days: float = 3.0,
    reference_time: datetime | None = None,
) -> list[ElementSet]:
    """Keep element sets whose epoch is within max_age_days of reference_time.

    Args:
        element_sets: Element sets to filter.
        max_age_days: Maximum epoch age in days (either direction).
        reference_time: Defaults to now (UTC).
    """
    if reference_time is None:
        reference_time = datetime.now(timezone.utc)
    if reference_time.tzinfo is None:
        reference_time = reference_time.replace(tzinfo=timezone.utc)

    cutoff = timedelta(days=max_age_days)
    element_sets = list(element_sets)
    fresh = [es for es in element_sets if abs(reference_time - es.epoch) <= cutoff]

    logger.debug("filter_stale: %d/%d element sets within %.1f days", len(fresh), len(element_sets), max_age_days)
    return fresh


def _is_data_line(line: str) -> bool:
    return line.startswith("1 ") or line.startswith("2 ")


def _clean_name(name: str) -> str:
    name = name.strip()
    # 3LE catalogs prefix the name line with "0 "
    if name.startswith("0 "):
        name = name[2:].strip()
    return name


def _parse_catalog_number(text: str) -> int:
    text = text.strip()
    if text and text[0].isalpha():
        index = _ALPHA5_LETTERS.find(text[0].upper())
        if index < 0 or not text[1:].isdigit():
            raise ValueError(f"invalid Alpha-5 catalog number {text!r}")
        return (index + 10) * 10000 + int(text[1:])
    return int(text)


def _parse_implied_decimal(text: str) -> float:
    text = text.strip()
    if not text.isdigit():
        raise ValueError(f"invalid eccentricity field {text!r}")
    return float("0." + text)
