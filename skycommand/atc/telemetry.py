"""
Flight telemetry extracted from controller replies.

Every model reply is expected to end with a tag such as::

    [TELEM: ALT=1200 SPD=150]
    [TELEM: ALT=--- SPD=240 HDG=090]

The tag drives the HUD readouts and is stripped before the reply is
logged or spoken.
"""

import re
from dataclasses import dataclass
from typing import Optional

UNKNOWN = "---"

TELEMETRY_TAG = re.compile(
    r"\[TELEM: ALT=(\d+|---) SPD=(\d+|---)(?: HDG=(\d+|---))?\]"
)


def _reading(value: Optional[str]) -> Optional[int]:
    if value is None or value == UNKNOWN:
        return None
    return int(value)


@dataclass(frozen=True)
class Telemetry:
    """Last known instrument readings (None = unreadable)."""

    altitude: Optional[int] = None
    speed: Optional[int] = None
    heading: Optional[int] = None

    def to_dict(self) -> dict:
        """HUD projection, unknown values shown as ``---``."""
        return {
            "alt": UNKNOWN if self.altitude is None else str(self.altitude),
            "spd": UNKNOWN if self.speed is None else str(self.speed),
            "hdg": UNKNOWN if self.heading is None else str(self.heading),
        }


def parse_telemetry(response: str, current: Telemetry) -> tuple[str, Telemetry]:
    """
    Strip the telemetry tag from a reply.

    Args:
        response: Raw model reply
        current: Telemetry to keep when the reply carries no tag

    Returns:
        (text without the tag, updated telemetry). Without a tag the
        response is returned unchanged together with ``current``.
    """
    match = TELEMETRY_TAG.search(response)
    if match is None:
        return response, current

    telemetry = Telemetry(
        altitude=_reading(match.group(1)),
        speed=_reading(match.group(2)),
        heading=_reading(match.group(3)),
    )
    cleaned = (response[: match.start()] + response[match.end():]).strip()
    return cleaned, telemetry
