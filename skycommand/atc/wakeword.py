"""
Wake phrase detection on recognized transcripts.

The pilot addresses the tower by starting an utterance with a call
phrase. Two forms are recognized:
- "atc" (short form)
- "alpha tango charlie" (phonetic form)
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_WAKE_PHRASES = ("atc", "alpha tango charlie")

# Characters left between the wake phrase and the payload ("ATC, this is...")
_SEPARATORS = " ,.;:!?-"


@dataclass(frozen=True)
class WakeMatch:
    """A transcript that starts with a wake phrase."""

    phrase: str
    transcript: str  # Trimmed original transcript
    payload: str  # Text after the wake phrase

    @property
    def has_payload(self) -> bool:
        """True when the pilot said more than the call phrase."""
        return len(self.payload) > WakePhraseDetector.MIN_PAYLOAD_CHARS


class WakePhraseDetector:
    """
    Case-insensitive prefix matcher for wake phrases.

    Usage:
        detector = WakePhraseDetector()
        match = detector.match("ATC this is Speedbird 123")
        if match and match.has_payload:
            print(match.payload)  # "this is Speedbird 123"
    """

    # Payloads this short ("ATC, uh") are treated as a bare call
    MIN_PAYLOAD_CHARS = 2

    def __init__(self, phrases: tuple[str, ...] = DEFAULT_WAKE_PHRASES):
        """
        Args:
            phrases: Wake phrases, checked in order
        """
        if not phrases:
            raise ValueError("At least one wake phrase is required")
        self.phrases = tuple(p.lower() for p in phrases)

    def match(self, transcript: str) -> Optional[WakeMatch]:
        """
        Check a transcript for a wake phrase prefix.

        Args:
            transcript: Final recognized text

        Returns:
            WakeMatch, or None if the transcript is not addressed to ATC
        """
        clean = transcript.strip()
        lower = clean.lower()

        for phrase in self.phrases:
            if lower.startswith(phrase):
                payload = clean[len(phrase):].lstrip(_SEPARATORS).strip()
                return WakeMatch(phrase=phrase, transcript=clean, payload=payload)

        logger.debug("No wake phrase: %r", clean)
        return None
