"""Shared element sets for the test suite."""
from __future__ import annotations

import pytest

from orbwatch.core.tle import ElementSet

ISS_NAME = "ISS (ZARYA)"
ISS_LINE1 = "1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9993"
ISS_LINE2 = "2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439596"

ACTIVE_TLES_TEXT = """\
CSS (TIANHE)
1 48274U 21035A   24045.50261574  .00021540  00000-0  25163-3 0  9993
2 48274  41.4681 279.1498 0005372 149.8847 345.3740 15.62096269157018
HST
1 20580U 90037B   24045.55478014  .00001456  00000-0  73052-4 0  9994
2 20580  28.4701  41.0696 0002622 348.3544 140.2428 15.09435694872912
"""

# Well above the ISS shell.
FAR_DEBRIS_TEXT = """\
NOAA 18
1 28654U 05018A   24045.52083333  .00000149  00000-0  10834-3 0  9994
2 28654  98.9710 100.7890 0014048 313.6230  46.3750 14.12905012970123
FENGYUN 1C DEB
1 31141U 99025AYM 24045.50000000  .00003200  00000-0  42000-3 0  9999
2 31141  99.0700 200.1200 0030000 150.0000 210.0000 14.80000000 80000
"""


def iss_clone(norad_id: int, mean_anomaly: str, name: str) -> str:
    """Three-line record sharing the ISS orbit, offset along-track.

    0.2 deg of mean anomaly is roughly 24 km at ISS altitude.
    """
    catalog = f"{norad_id:05d}"
    line1 = ISS_LINE1[:2] + catalog + ISS_LINE1[7:]
    line2 = ISS_LINE2[:2] + catalog + ISS_LINE2[7:43] + mean_anomaly + ISS_LINE2[51:]
    return f"{name}\n{line1}\n{line2}\n"


NEAR_DEBRIS_TEXT = iss_clone(99001, "179.1792", "NEAR DEB")
CRITICAL_DEBRIS_TEXT = iss_clone(99002, "178.9992", "CLOSE FRAGMENT")


@pytest.fixture
def iss() -> ElementSet:
    return ElementSet.from_lines(ISS_LINE1, ISS_LINE2, name=ISS_NAME)
