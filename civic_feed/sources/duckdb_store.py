from __future__ import annotations

import asyncio
import json
import threading
from datetime import timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import duckdb
import pandas as pd

from ..models import ContentItem, StorageSettings
from ..utils.logging import get_logger
from .base import CandidateFilter, ContentSource

COUNTER_COLUMNS = [
    "likes",
    "dislikes",
    "agrees",
    "disagrees",
    "comments",
    "shares",
    "views",
    "community_notes",
    "reports",
]
POST_COLUMNS = [
    "id",
    "author_id",
    "author",
    "content",
    "created_at",
    *COUNTER_COLUMNS,
    "comment_reactions",
    "is_political",
    "embedding",
    "feed_visible",
    "audience",
]
INTEREST_LIKES = 50
INTEREST_OWN_POSTS = 20


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    counters = ",\n".join(f"            {name} INTEGER DEFAULT 0" for name in COUNTER_COLUMNS)
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS posts (
            id TEXT PRIMARY KEY,
            author_id TEXT NOT NULL,
            author TEXT,
            content TEXT,
            created_at TIMESTAMP NOT NULL,
{counters},
            comment_reactions TEXT,
            is_political BOOLEAN DEFAULT FALSE,
            embedding TEXT,
            feed_visible BOOLEAN DEFAULT TRUE,
            audience TEXT DEFAULT 'PUBLIC'
        )
        """
    )
    conn.execute("CREATE TABLE IF NOT EXISTS post_tags (post_id TEXT, tag TEXT)")
    conn.execute("CREATE TABLE IF NOT EXISTS follows (follower_id TEXT, following_id TEXT)")
    conn.execute("CREATE TABLE IF NOT EXISTS friendships (user_id TEXT, friend_id TEXT)")
    conn.execute("CREATE TABLE IF NOT EXISTS likes (user_id TEXT, post_id TEXT, created_at TIMESTAMP DEFAULT current_timestamp)")
    conn.execute("CREATE TABLE IF NOT EXISTS reputations (user_id TEXT PRIMARY KEY, score DOUBLE)")


def _connect(settings: StorageSettings) -> duckdb.DuckDBPyConnection:
    db_path = Path(settings.path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = duckdb.connect(str(db_path))
    ensure_schema(conn)
    return conn


def post_row(item: ContentItem) -> Dict[str, Any]:
    """Flatten a post into primitive columns."""

    created = item.created_at
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc).replace(tzinfo=None)
    row: Dict[str, Any] = {
        "id": item.id,
        "author_id": item.author_id,
        "author": item.author.model_dump_json() if item.author else None,
        "content": item.content,
        "created_at": created,
        "comment_reactions": json.dumps([reaction.model_dump() for reaction in item.comment_reactions]),
        "is_political": item.is_political,
        "embedding": json.dumps(item.embedding),
        "feed_visible": item.feed_visible,
        "audience": item.audience,
    }
    row.update(item.counters.model_dump())
    return row


def write_posts(items: Iterable[ContentItem], settings: StorageSettings) -> int:
    items = list(items)
    if not items:
        return 0
    df = pd.DataFrame([post_row(item) for item in items]).reindex(columns=POST_COLUMNS)
    tags = pd.DataFrame(
        [{"post_id": item.id, "tag": tag} for item in items for tag in item.tags],
        columns=["post_id", "tag"],
    )

    conn = _connect(settings)
    try:
        for item_id in df["id"].tolist():
            conn.execute("DELETE FROM posts WHERE id = ?", [item_id])
            conn.execute("DELETE FROM post_tags WHERE post_id = ?", [item_id])
        conn.register("posts_df", df)
        conn.execute(f"INSERT INTO posts ({', '.join(POST_COLUMNS)}) SELECT * FROM posts_df")
        conn.unregister("posts_df")
        if not tags.empty:
            conn.register("tags_df", tags)
            conn.execute("INSERT INTO post_tags SELECT post_id, tag FROM tags_df")
            conn.unregister("tags_df")
    finally:
        conn.close()
    get_logger(__name__).info("Stored posts", extra={"rows": len(df), "path": settings.path})
    return len(df)


def write_relations(
    settings: StorageSettings,
    *,
    follows: Sequence[Tuple[str, str]] = (),
    friendships: Sequence[Tuple[str, str]] = (),
    likes: Sequence[Tuple[str, str]] = (),
    reputations: Optional[Mapping[str, float]] = None,
) -> None:
    conn = _connect(settings)
    try:
        if follows:
            conn.executemany("INSERT INTO follows VALUES (?, ?)", [list(pair) for pair in follows])
        if friendships:
            conn.executemany("INSERT INTO friendships VALUES (?, ?)", [list(pair) for pair in friendships])
        if likes:
            conn.executemany("INSERT INTO likes (user_id, post_id) VALUES (?, ?)", [list(pair) for pair in likes])
        for user_id, score in (reputations or {}).items():
            conn.execute("DELETE FROM reputations WHERE user_id = ?", [user_id])
            conn.execute("INSERT INTO reputations VALUES (?, ?)", [user_id, float(score)])
    finally:
        conn.close()


def _row_to_item(row: Dict[str, Any], tags: List[str]) -> ContentItem:
    return ContentItem(
        id=row["id"],
        author_id=row["author_id"],
        author=json.loads(row["author"]) if row.get("author") else None,
        content=row.get("content"),
        created_at=row["created_at"],
        counters={name: row.get(name) for name in COUNTER_COLUMNS},
        comment_reactions=json.loads(row["comment_reactions"]) if row.get("comment_reactions") else [],
        tags=tags,
        is_political=bool(row.get("is_political")),
        embedding=json.loads(row["embedding"]) if row.get("embedding") else [],
        feed_visible=bool(row.get("feed_visible")),
        audience=row.get("audience") or "PUBLIC",
    )


class DuckDBContentSource(ContentSource):
    """Reads posts and the social graph from a DuckDB file; queries run in a worker thread."""

    def __init__(self, settings: StorageSettings):
        self.settings = settings
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            if self._conn is None:
                self._conn = _connect(self.settings)
            cursor = self._conn.execute(sql, list(params))
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, values)) for values in cursor.fetchall()]

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _candidate_posts(self, flt: CandidateFilter) -> List[ContentItem]:
        clauses: List[str] = []
        params: List[Any] = []
        if flt.since is not None:
            since = flt.since.astimezone(timezone.utc).replace(tzinfo=None) if flt.since.tzinfo else flt.since
            clauses.append("created_at >= ?")
            params.append(since)
        if flt.exclude_author_id:
            clauses.append("author_id <> ?")
            params.append(flt.exclude_author_id)
        if flt.author_ids is not None:
            if not flt.author_ids:
                return []
            clauses.append(f"author_id IN ({', '.join('?' for _ in flt.author_ids)})")
            params.extend(sorted(flt.author_ids))
        if flt.tags:
            clauses.append(
                "EXISTS (SELECT 1 FROM post_tags t WHERE t.post_id = posts.id "
                f"AND t.tag IN ({', '.join('?' for _ in flt.tags)}))"
            )
            params.extend(flt.tags)
        if flt.visible_only:
            clauses.append("feed_visible")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(f"SELECT * FROM posts {where} ORDER BY created_at DESC, id LIMIT ?", [*params, flt.limit])
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        tag_rows = self._query(
            f"SELECT post_id, tag FROM post_tags WHERE post_id IN ({', '.join('?' for _ in ids)}) ORDER BY tag",
            ids,
        )
        tags: Dict[str, List[str]] = {}
        for tag_row in tag_rows:
            tags.setdefault(tag_row["post_id"], []).append(tag_row["tag"])
        return [_row_to_item(row, tags.get(row["id"], [])) for row in rows]

    async def fetch_candidate_posts(self, flt: CandidateFilter) -> List[ContentItem]:
        return await asyncio.to_thread(self._candidate_posts, flt)

    async def fetch_author_reputation(self, author_id: str) -> Optional[float]:
        rows = await asyncio.to_thread(self._query, "SELECT score FROM reputations WHERE user_id = ?", [author_id])
        return float(rows[0]["score"]) if rows else None

    async def fetch_viewer_following(self, viewer_id: str) -> Set[str]:
        rows = await asyncio.to_thread(self._query, "SELECT following_id FROM follows WHERE follower_id = ?", [viewer_id])
        return {row["following_id"] for row in rows}

    async def fetch_viewer_friends(self, viewer_id: str) -> Set[str]:
        rows = await asyncio.to_thread(
            self._query,
            """
            SELECT friend_id AS other FROM friendships WHERE user_id = ?
            UNION
            SELECT user_id AS other FROM friendships WHERE friend_id = ?
            """,
            [viewer_id, viewer_id],
        )
        return {row["other"] for row in rows}

    async def fetch_viewer_likes(self, viewer_id: str, item_ids: Iterable[str]) -> Set[str]:
        ids = list(item_ids)
        if not ids:
            return set()
        rows = await asyncio.to_thread(
            self._query,
            f"SELECT post_id FROM likes WHERE user_id = ? AND post_id IN ({', '.join('?' for _ in ids)})",
            [viewer_id, *ids],
        )
        return {row["post_id"] for row in rows}

    async def fetch_viewer_interests(self, viewer_id: str) -> List[List[float]]:
        rows = await asyncio.to_thread(
            self._query,
            f"""
            SELECT embedding FROM (
                SELECT p.embedding FROM likes l JOIN posts p ON p.id = l.post_id
                WHERE l.user_id = ? ORDER BY l.created_at DESC LIMIT {INTEREST_LIKES}
            )
            UNION ALL
            SELECT embedding FROM (
                SELECT embedding FROM posts WHERE author_id = ? ORDER BY created_at DESC LIMIT {INTEREST_OWN_POSTS}
            )
            """,
            [viewer_id, viewer_id],
        )
        embeddings = [json.loads(row["embedding"]) for row in rows if row.get("embedding")]
        return [embedding for embedding in embeddings if embedding]
