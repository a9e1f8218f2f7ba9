"""
SkyCommand ATC - AI air traffic controller for screen-shared flight sims.
"""

import logging

# Request-level chatter from the HTTP clients
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)

__version__ = "0.1.0"

from skycommand.atc.session import ATCSession, ConnectionState

__all__ = ["ATCSession", "ConnectionState", "__version__"]
