"""
Flight log persistence.

Every exchanged message is mirrored to a sink. Saving is best effort:
failures are logged here and never reach the session.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from skycommand.config import LogSinkConfig

logger = logging.getLogger(__name__)


class LogSink(ABC):
    """Destination for flight log rows."""

    @abstractmethod
    async def save(
        self,
        session_id: str,
        sender: str,
        message: str,
        context: Optional[str] = None,
    ) -> None:
        """Persist one row. Must not raise."""

    async def close(self) -> None:
        pass


class NullLogSink(LogSink):
    """Discards everything (persistence not configured)."""

    async def save(self, session_id, sender, message, context=None) -> None:
        return None


class MemoryLogSink(LogSink):
    """Keeps rows in memory."""

    def __init__(self):
        self.rows: list[dict] = []

    async def save(self, session_id, sender, message, context=None) -> None:
        self.rows.append({
            "session_id": session_id,
            "sender": sender,
            "message": message,
            "context": context,
        })


class SupabaseLogSink(LogSink):
    """
    Insert rows into a Supabase table through its PostgREST endpoint.

    Usage:
        sink = SupabaseLogSink("https://xyz.supabase.co", anon_key)
        await sink.save(session_id, "ATC", "Radar contact.")
    """

    def __init__(
        self,
        url: str,
        key: str,
        table: str = "flight_logs",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            url: Project URL (https://<project>.supabase.co)
            key: Anon or service key
            table: Target table
            timeout: Request timeout in seconds
            transport: Custom transport (tests use httpx.MockTransport)
        """
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
                "Prefer": "return=minimal",
            },
        )

    async def save(self, session_id, sender, message, context=None) -> None:
        row = {
            "session_id": session_id,
            "sender": sender,
            "message": message,
            "context": context,
        }
        try:
            resp = await self._client.post(self.endpoint, json=[row])
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Error saving log to Supabase: %s %s", e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.error("Unexpected error saving log: %s", e)

    async def close(self) -> None:
        await self._client.aclose()


def create_log_sink(config: Optional[LogSinkConfig] = None) -> LogSink:
    """
    Build the configured sink.

    Supabase when both URL and key are set, otherwise a NullLogSink.
    """
    config = config or LogSinkConfig()
    if config.supabase_url and config.supabase_key:
        logger.info("Flight logs: Supabase table %s", config.table)
        return SupabaseLogSink(
            config.supabase_url,
            config.supabase_key,
            table=config.table,
            timeout=config.timeout,
        )

    logger.info("Flight logs: persistence disabled")
    return NullLogSink()
