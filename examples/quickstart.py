"""orbwatch quickstart: track the ISS against a debris catalog headlessly."""

import logging
import time

from orbwatch import SimulationEngine, parse_tle

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

# ISS (ZARYA) TLE
player_text = """
ISS (ZARYA)
1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9993
2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439596
""".strip()

debris_text = """
FENGYUN 1C DEB
1 31141U 99025AYM 24045.50000000  .00003200  00000-0  42000-3 0  9999
2 31141  99.0700 200.1200 0030000 150.0000 210.0000 14.80000000 80000
COSMOS 1408 DEB
1 51087U 82092HY  24045.40000000  .00013000  00000-0  73000-3 0  9999
2 51087  82.5600 120.3400 0050000 200.0000 160.0000 15.15000000 50000
""".strip()

iss = parse_tle(player_text)[0]

engine = SimulationEngine(start_time=iss.epoch)
engine.ingest_elements({"debris": debris_text})
engine.set_player_from_text(player_text)
engine.set_time_multiplier(100)


def show(snapshot):
    params = snapshot.orbital_params
    print(
        f"{snapshot.simulation_time:%H:%M:%S} | alt {params.altitude_km:6.1f} km"
        f" | threat {snapshot.threat.current:3d} {snapshot.threat.status.value:<8}"
        f" | {snapshot.threat_description}"
    )


engine.subscribe(show)

start = time.monotonic()
while time.monotonic() - start < 3.0:
    engine.tick(time.monotonic())
    time.sleep(1 / 60)

stats = engine.statistics()
print(f"Ticks: {stats.tick_count}, average threat {stats.threat.average}, max {stats.threat.maximum}")
