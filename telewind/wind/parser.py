"""
Anemometer page parser.

The station publishes an HTML table, newest row first:

    | 29.10.2022 22:45 | СЗЗ (301°) | 5.4 |

time (local, Asia/Vladivostok), direction and average speed in m/s.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List

from bs4 import BeautifulSoup

from telewind.errors import ObservationParseError
from telewind.utils.timezone import TIMEZONE

WIND_DIRECTION = re.compile(r"([0-9]{1,3})°")
TIME_FORMAT = "%d.%m.%Y %H:%M"

# (degrees, name, arrow) - arrow points where the wind blows to
DIRECTIONS = [
    (0, "N", "↓"),
    (360, "N", "↓"),
    (45, "NE", "↙"),
    (90, "E", "←"),
    (135, "SE", "↖"),
    (180, "S", "↑"),
    (225, "SW", "↗"),
    (270, "W", "→"),
    (315, "NW", "↘"),
]


@dataclass(frozen=True)
class Observation:
    time: datetime
    direction: int
    avg_speed: float

    @property
    def compass(self):
        _, name, arrow = min(DIRECTIONS, key=lambda d: abs(self.direction - d[0]))
        return name, arrow

    def __str__(self) -> str:
        name, arrow = self.compass
        return f"{self.time:%H:%M} {self.avg_speed:2.1f} m/s {name:<2} {arrow} ({self.direction:3d}°)"


def parse_time(text: str) -> datetime:
    try:
        return datetime.strptime(text.strip(), TIME_FORMAT).replace(tzinfo=TIMEZONE)
    except ValueError as e:
        raise ObservationParseError(f"bad observation time {text!r}") from e


def parse_direction(text: str) -> int:
    """Parse strings like ``СЗЗ (301°)``."""
    match = WIND_DIRECTION.search(text)
    if match:
        direction = int(match.group(1))
        if direction <= 360:
            return direction % 360
    raise ObservationParseError(f"bad wind direction {text!r}")


def parse_speed(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError as e:
        raise ObservationParseError(f"bad wind speed {text!r}") from e


def parse(html: str) -> List[Observation]:
    """Parse every data row of the page, in page order."""
    soup = BeautifulSoup(html, "html.parser")
    result = []
    for row in soup.select("table tr"):
        if row.find("th") is not None:
            # header
            continue
        columns = row.find_all("td")
        if len(columns) < 3:
            raise ObservationParseError(f"expected 3 columns, got {len(columns)}")
        result.append(
            Observation(
                time=parse_time(columns[0].get_text()),
                direction=parse_direction(columns[1].get_text()),
                avg_speed=parse_speed(columns[2].get_text()),
            )
        )
    return result
