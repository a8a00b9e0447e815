"""
Local SQLite cache of novel listings for offline display.

Novels are stored as JSON projections stamped with `last_fetched` (epoch
ms). A listing is an ordered list of novel ids; refreshing a listing
overwrites it and the novels it references.
"""
import logging
import sqlite3
import threading
import time
from contextlib import closing
from pathlib import Path
from typing import Iterable, List, Optional, Union

from client_models import NovelDto

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class NovelCache:
    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        con = sqlite3.connect(str(self.db_path))
        con.row_factory = sqlite3.Row
        return con

    def _init_schema(self) -> None:
        with closing(self._conn()) as con, con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS novels (
                  id TEXT PRIMARY KEY,
                  payload TEXT NOT NULL,
                  status TEXT,
                  last_fetched INTEGER NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS listings (
                  listing TEXT NOT NULL,
                  position INTEGER NOT NULL,
                  novel_id TEXT NOT NULL,
                  last_fetched INTEGER NOT NULL,
                  PRIMARY KEY (listing, position)
                );
                """
            )

    @staticmethod
    def _upsert(con: sqlite3.Connection, novels: Iterable[NovelDto], stamp: int) -> None:
        con.executemany(
            "INSERT OR REPLACE INTO novels (id, payload, status, last_fetched) VALUES (?, ?, ?, ?)",
            [(n.id, n.model_dump_json(), n.status, stamp) for n in novels],
        )

    def put_novels(self, novels: Iterable[NovelDto], fetched_at: Optional[int] = None) -> None:
        with self._lock, closing(self._conn()) as con, con:
            self._upsert(con, novels, now_ms() if fetched_at is None else fetched_at)

    def put_listing(self, listing: str, novels: List[NovelDto], fetched_at: Optional[int] = None) -> None:
        """Overwrite `listing` with `novels` in server order."""
        stamp = now_ms() if fetched_at is None else fetched_at
        with self._lock, closing(self._conn()) as con, con:
            self._upsert(con, novels, stamp)
            con.execute("DELETE FROM listings WHERE listing = ?", (listing,))
            con.executemany(
                "INSERT INTO listings (listing, position, novel_id, last_fetched) VALUES (?, ?, ?, ?)",
                [(listing, i, n.id, stamp) for i, n in enumerate(novels)],
            )
        logger.debug("Cached %d novels for %s", len(novels), listing)

    def get_listing(self, listing: str) -> List[NovelDto]:
        with closing(self._conn()) as con:
            rows = con.execute(
                """
                SELECT n.payload FROM listings l
                JOIN novels n ON n.id = l.novel_id
                WHERE l.listing = ?
                ORDER BY l.position
                """,
                (listing,),
            ).fetchall()
        return [NovelDto.model_validate_json(r["payload"]) for r in rows]

    def get_novel(self, novel_id: str) -> Optional[NovelDto]:
        with closing(self._conn()) as con:
            row = con.execute("SELECT payload FROM novels WHERE id = ?", (novel_id,)).fetchone()
        return NovelDto.model_validate_json(row["payload"]) if row else None

    def remove_novel(self, novel_id: str) -> None:
        with self._lock, closing(self._conn()) as con, con:
            con.execute("DELETE FROM novels WHERE id = ?", (novel_id,))
            con.execute("DELETE FROM listings WHERE novel_id = ?", (novel_id,))

    def last_fetched(self, listing: str) -> Optional[int]:
        with closing(self._conn()) as con:
            row = con.execute(
                "SELECT MIN(last_fetched) AS fetched FROM listings WHERE listing = ?", (listing,)
            ).fetchone()
        return row["fetched"] if row and row["fetched"] is not None else None

    def is_stale(self, listing: str, max_age: float) -> bool:
        fetched = self.last_fetched(listing)
        if fetched is None:
            return True
        return now_ms() - fetched > max_age * 1000

    def clear(self) -> None:
        with self._lock, closing(self._conn()) as con, con:
            con.execute("DELETE FROM listings")
            con.execute("DELETE FROM novels")
