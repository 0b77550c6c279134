"""
Hit storage strategies using Strategy Pattern.

Raw click events consumed from the ``url_clicks`` channel are written here
by the event worker. Fields are stored as received; no geo or device
enrichment happens in this service.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Dict, List

from shortlinks_app.queue.models import ClickEvent

logger = logging.getLogger(__name__)


class HitStorageStrategy(ABC):
    """
    Abstract base class for hit storage strategies.

    Writes must be idempotent per event_id: the channel delivers
    at-least-once, so the same click can arrive twice.
    """

    @abstractmethod
    async def store_hits(self, events: List[ClickEvent]) -> int:
        """
        Store click events, skipping ones already stored.

        Returns:
            Number of newly stored events
        """
        pass

    async def store_hit(self, event: ClickEvent) -> int:
        return await self.store_hits([event])

    @abstractmethod
    async def get_total_hits(self, short_code: str) -> int:
        """Get total stored hits for a short code"""
        pass

    @abstractmethod
    async def get_top_referrers(self, short_code: str, limit: int = 10) -> List[Dict]:
        """Get top referrers"""
        pass


class SQLiteHitStorage(HitStorageStrategy):
    """
    SQLite implementation for hit storage.

    Zero configuration, good for development and low-traffic deployments.
    """

    def __init__(self, db_path: str = "analytics.db"):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        # A single connection keeps ":memory:" databases alive between calls
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_database()

    def _init_database(self):
        """Create hits table if it doesn't exist"""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS url_hits (
                event_id TEXT PRIMARY KEY,
                short_code TEXT NOT NULL,
                url_id TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                ip_address TEXT,
                user_agent TEXT,
                referrer TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_url_hits_short_code ON url_hits (short_code);
            CREATE INDEX IF NOT EXISTS idx_url_hits_timestamp ON url_hits (timestamp);
        """)
        self._conn.commit()
        logger.info("SQLite hit storage initialized at %s", self.db_path)

    async def store_hits(self, events: List[ClickEvent]) -> int:
        data = [
            (
                event.event_id,
                event.short_code,
                event.url_id,
                event.owner_id,
                event.timestamp.isoformat(),
                event.ip_address,
                event.user_agent,
                event.referrer,
            )
            for event in events
        ]
        before = self._conn.total_changes
        self._conn.executemany("""
            INSERT OR IGNORE INTO url_hits (
                event_id, short_code, url_id, owner_id, timestamp,
                ip_address, user_agent, referrer
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, data)
        self._conn.commit()
        return self._conn.total_changes - before

    async def get_total_hits(self, short_code: str) -> int:
        cursor = self._conn.execute(
            "SELECT COUNT(*) FROM url_hits WHERE short_code = ?",
            (short_code,)
        )
        return cursor.fetchone()[0]

    async def get_top_referrers(self, short_code: str, limit: int = 10) -> List[Dict]:
        cursor = self._conn.execute("""
            SELECT referrer, COUNT(*) as count
            FROM url_hits
            WHERE short_code = ? AND referrer IS NOT NULL
            GROUP BY referrer
            ORDER BY count DESC
            LIMIT ?
        """, (short_code, limit))
        return [{"referrer": row[0], "count": row[1]} for row in cursor.fetchall()]

    def close(self) -> None:
        self._conn.close()
