import json
import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

import psycopg2

from models.chapter import Chapter, DEFAULT_TRANSITION, RenderQueueEntry
from models.quality_check import QualityCheckResult
from models.script import Script
from runtime.chapter_state import ChapterStatus, IN_QUEUE_STATUSES
from runtime.persistence.render_store import (
    ChapterNotFoundError,
    RenderStore,
    ScriptNotFoundError,
    chapter_priority,
    count_progress,
)
from runtime.script_state import StitchState

logger = logging.getLogger(__name__)

# Advisory lock key serializing claims across postgres connections
CLAIM_LOCK_KEY = 7_310_421

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS documentary_scripts (
        script_id TEXT PRIMARY KEY,
        title TEXT,
        credits TEXT,
        music_config TEXT,
        sources TEXT,
        final_render_status TEXT DEFAULT 'pending',
        final_video_url TEXT,
        final_duration_seconds REAL,
        final_chapter_count INTEGER,
        final_render_error TEXT,
        stitched_credits TEXT,
        quality_check_passed INTEGER,
        quality_checks TEXT,
        quality_check_notes TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documentary_chapters (
        chapter_id TEXT PRIMARY KEY,
        script_id TEXT NOT NULL,
        chapter_number INTEGER NOT NULL,
        title TEXT,
        narration TEXT,
        visual_markers TEXT,
        template_config TEXT,
        transition_type TEXT,
        music_track TEXT,
        duration_minutes REAL,
        render_status TEXT DEFAULT 'not_queued',
        video_url TEXT,
        video_duration_seconds REAL,
        narration_audio_url TEXT,
        render_error TEXT,
        render_error_kind TEXT,
        render_attempts INTEGER DEFAULT 0,
        updated_at TEXT,
        UNIQUE (script_id, chapter_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documentary_render_queue (
        queue_id TEXT PRIMARY KEY,
        chapter_id TEXT NOT NULL UNIQUE,
        script_id TEXT NOT NULL,
        priority INTEGER NOT NULL,
        status TEXT NOT NULL,
        worker_id TEXT,
        attempt INTEGER DEFAULT 1,
        enqueue_seq INTEGER NOT NULL,
        queued_at TEXT,
        claimed_at TEXT
    )
    """,
]

CHAPTER_COLUMNS = (
    "chapter_id, script_id, chapter_number, title, narration, visual_markers, "
    "template_config, transition_type, music_track, duration_minutes, render_status, "
    "video_url, video_duration_seconds, narration_audio_url, render_error, "
    "render_error_kind, render_attempts"
)

SCRIPT_COLUMNS = (
    "script_id, title, credits, music_config, sources, final_render_status, "
    "final_video_url, final_duration_seconds, final_chapter_count, final_render_error, "
    "stitched_credits, quality_check_passed, quality_checks, quality_check_notes"
)

QUEUE_COLUMNS = (
    "queue_id, chapter_id, script_id, priority, status, worker_id, attempt, queued_at, claimed_at"
)


def _dumps(value):
    return json.dumps(value) if value is not None else None


def _loads(value, default=None):
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _now():
    return datetime.now(timezone.utc).isoformat()


class SQLStore(RenderStore):
    """
    Render store on sqlite or postgres, selected by DATABASE_URL.

    One connection is shared by all threads; every operation runs inside
    _transaction(), which holds a process lock and (on sqlite) an IMMEDIATE
    write transaction. On postgres claims additionally take a transaction
    scoped advisory lock so separate processes serialize too.
    """

    def __init__(self, database_url=None, lazy=False):
        self._conn = None
        self.backend = None
        self.lazy = lazy
        self._lock = threading.RLock()

        self.database_url = database_url or os.getenv("DATABASE_URL")
        if not self.database_url:
            raise RuntimeError("DATABASE_URL not set")

        if not lazy:
            self._connect()

    # -------------------------------------------------

    def _ph(self):
        return "?" if self.backend == "sqlite" else "%s"

    def _init_schema(self):
        cur = self.conn.cursor()
        try:
            for statement in SCHEMA:
                cur.execute(statement)
            self.conn.commit()
        finally:
            cur.close()

    @contextmanager
    def _transaction(self):
        with self._lock:
            conn = self.conn
            cur = conn.cursor()
            try:
                if self.backend == "sqlite":
                    cur.execute("BEGIN IMMEDIATE")
                yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cur.close()

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # -------------------------------------------------
    # Scripts & chapters
    # -------------------------------------------------

    def create_script(self, title, chapters, credits=None, music_config=None, sources=None, script_id=None):
        script_id = script_id or str(uuid.uuid4())
        numbers = [int(c["chapter_number"]) for c in chapters]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"Duplicate chapter numbers in script {script_id}")

        with self._transaction() as cur:
            p = self._ph()
            cur.execute(
                f"""
                INSERT INTO documentary_scripts
                (script_id, title, credits, music_config, sources, final_render_status, created_at, updated_at)
                VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p}, {p})
                """,
                (
                    script_id,
                    title,
                    _dumps(credits),
                    _dumps(music_config),
                    json.dumps(list(sources or [])),
                    StitchState.PENDING.value,
                    _now(),
                    _now(),
                ),
            )
            for spec in chapters:
                cur.execute(
                    f"""
                    INSERT INTO documentary_chapters
                    (chapter_id, script_id, chapter_number, title, narration, visual_markers,
                     template_config, transition_type, music_track, duration_minutes,
                     render_status, render_attempts, updated_at)
                    VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, {p}, 0, {p})
                    """,
                    (
                        spec.get("chapter_id") or str(uuid.uuid4()),
                        script_id,
                        int(spec["chapter_number"]),
                        spec.get("title", ""),
                        spec.get("narration", ""),
                        json.dumps(list(spec.get("visual_markers") or [])),
                        _dumps(spec.get("template_config")),
                        spec.get("transition_type") or DEFAULT_TRANSITION,
                        spec.get("music_track"),
                        spec.get("duration_minutes"),
                        ChapterStatus.NOT_QUEUED.value,
                        _now(),
                    ),
                )
        return script_id

    def get_script(self, script_id, with_chapters=True):
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {SCRIPT_COLUMNS} FROM documentary_scripts WHERE script_id = {self._ph()}",
                (script_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            script = self._script_from_row(row)
            if with_chapters:
                script.chapters = self._select_chapters(cur, script_id)
            return script

    def get_chapter(self, chapter_id):
        with self._transaction() as cur:
            return self._select_chapter(cur, chapter_id)

    def get_chapters(self, script_id, statuses=None):
        with self._transaction() as cur:
            chapters = self._select_chapters(cur, script_id)
        if statuses:
            wanted = {ChapterStatus(s) for s in statuses}
            chapters = [c for c in chapters if c.render_status in wanted]
        return chapters

    # -------------------------------------------------
    # Render queue
    # -------------------------------------------------

    def enqueue_script(self, script_id, max_concurrency):
        with self._transaction() as cur:
            p = self._ph()
            self._require_script(cur, script_id)
            cur.execute(
                f"""
                SELECT chapter_id, chapter_number, render_attempts
                FROM documentary_chapters
                WHERE script_id = {p} AND render_status = {p}
                ORDER BY chapter_number
                """,
                (script_id, ChapterStatus.NOT_QUEUED.value),
            )
            rows = cur.fetchall()
            for chapter_id, chapter_number, attempts in rows:
                self._insert_entry(cur, chapter_id, script_id, chapter_number, attempts or 0)
            return len(rows)

    def enqueue_chapter(self, chapter_id):
        with self._transaction() as cur:
            chapter = self._select_chapter(cur, chapter_id)
            if chapter is None:
                raise ChapterNotFoundError(chapter_id)
            if chapter.render_status in IN_QUEUE_STATUSES:
                return False
            self._insert_entry(
                cur,
                chapter.chapter_id,
                chapter.script_id,
                chapter.chapter_number,
                chapter.render_attempts,
            )
            return True

    def claim_next_chapter(self, max_concurrency, worker_id):
        with self._transaction() as cur:
            p = self._ph()
            if self.backend == "postgres":
                cur.execute("SELECT pg_advisory_xact_lock(%s)", (CLAIM_LOCK_KEY,))

            cur.execute(
                f"SELECT COUNT(*) FROM documentary_render_queue WHERE status = {p}",
                (ChapterStatus.RENDERING.value,),
            )
            rendering = cur.fetchone()[0]
            if rendering >= max_concurrency:
                return None

            cur.execute(
                f"""
                SELECT queue_id, chapter_id, attempt
                FROM documentary_render_queue
                WHERE status = {p}
                ORDER BY priority DESC, enqueue_seq ASC
                LIMIT 1
                """,
                (ChapterStatus.QUEUED.value,),
            )
            row = cur.fetchone()
            if not row:
                return None
            queue_id, chapter_id, attempt = row

            cur.execute(
                f"""
                UPDATE documentary_render_queue
                SET status = {p}, worker_id = {p}, claimed_at = {p}
                WHERE queue_id = {p} AND status = {p}
                """,
                (
                    ChapterStatus.RENDERING.value,
                    worker_id,
                    _now(),
                    queue_id,
                    ChapterStatus.QUEUED.value,
                ),
            )
            if cur.rowcount != 1:
                return None

            cur.execute(
                f"""
                UPDATE documentary_chapters
                SET render_status = {p}, render_attempts = {p}, updated_at = {p}
                WHERE chapter_id = {p}
                """,
                (ChapterStatus.RENDERING.value, attempt, _now(), chapter_id),
            )

            chapter = self._select_chapter(cur, chapter_id)
            chapter.queue_id = queue_id
            chapter.worker_id = worker_id
            return chapter

    def complete_chapter_render(self, queue_id, video_url, video_duration_seconds, audio_url):
        with self._transaction() as cur:
            chapter_id = self._pop_rendering(cur, queue_id)
            if chapter_id is None:
                return None
            p = self._ph()
            cur.execute(
                f"""
                UPDATE documentary_chapters
                SET render_status = {p}, video_url = {p}, video_duration_seconds = {p},
                    narration_audio_url = {p}, render_error = NULL, render_error_kind = NULL,
                    updated_at = {p}
                WHERE chapter_id = {p}
                """,
                (
                    ChapterStatus.COMPLETED.value,
                    video_url,
                    video_duration_seconds,
                    audio_url,
                    _now(),
                    chapter_id,
                ),
            )
            return self._select_chapter(cur, chapter_id)

    def fail_chapter_render(self, queue_id, error_message, error_kind=None):
        with self._transaction() as cur:
            chapter_id = self._pop_rendering(cur, queue_id)
            if chapter_id is None:
                return None
            p = self._ph()
            cur.execute(
                f"""
                UPDATE documentary_chapters
                SET render_status = {p}, render_error = {p}, render_error_kind = {p}, updated_at = {p}
                WHERE chapter_id = {p}
                """,
                (ChapterStatus.FAILED.value, error_message, error_kind, _now(), chapter_id),
            )
            return self._select_chapter(cur, chapter_id)

    def get_queue_entries(self, script_id=None):
        with self._transaction() as cur:
            if script_id is None:
                cur.execute(
                    f"SELECT {QUEUE_COLUMNS} FROM documentary_render_queue "
                    "ORDER BY priority DESC, enqueue_seq ASC"
                )
            else:
                cur.execute(
                    f"SELECT {QUEUE_COLUMNS} FROM documentary_render_queue "
                    f"WHERE script_id = {self._ph()} ORDER BY priority DESC, enqueue_seq ASC",
                    (script_id,),
                )
            return [
                RenderQueueEntry(
                    queue_id=r[0],
                    chapter_id=r[1],
                    script_id=r[2],
                    priority=r[3],
                    status=ChapterStatus(r[4]),
                    worker_id=r[5],
                    attempt=r[6],
                    queued_at=r[7],
                    claimed_at=r[8],
                )
                for r in cur.fetchall()
            ]

    def count_rendering(self):
        with self._transaction() as cur:
            cur.execute(
                f"SELECT COUNT(*) FROM documentary_render_queue WHERE status = {self._ph()}",
                (ChapterStatus.RENDERING.value,),
            )
            return int(cur.fetchone()[0])

    # -------------------------------------------------
    # Progress
    # -------------------------------------------------

    def get_render_progress(self, script_id):
        with self._transaction() as cur:
            self._require_script(cur, script_id)
            cur.execute(
                f"""
                SELECT render_status, COUNT(*)
                FROM documentary_chapters
                WHERE script_id = {self._ph()}
                GROUP BY render_status
                """,
                (script_id,),
            )
            statuses = []
            for status, count in cur.fetchall():
                statuses.extend([status] * int(count))
            return count_progress(statuses)

    # -------------------------------------------------
    # Script-level writes
    # -------------------------------------------------

    def set_credits(self, script_id, credits):
        self._update_script(script_id, credits=_dumps(credits))

    def complete_stitch(self, script_id, final_video_url, total_duration_seconds, chapter_count, credits):
        self._update_script(
            script_id,
            final_render_status=StitchState.COMPLETED.value,
            final_video_url=final_video_url,
            final_duration_seconds=total_duration_seconds,
            final_chapter_count=chapter_count,
            final_render_error=None,
            stitched_credits=_dumps(credits),
        )

    def fail_stitch(self, script_id, error_message):
        self._update_script(
            script_id,
            final_render_status=StitchState.FAILED.value,
            final_render_error=error_message,
        )

    def record_quality_check(self, result: QualityCheckResult):
        self._update_script(
            result.script_id,
            quality_check_passed=int(result.passed),
            quality_checks=json.dumps(result.checks),
            quality_check_notes=result.notes,
        )

    # -------------------------------------------------
    # Internal
    # -------------------------------------------------

    def _update_script(self, script_id, **columns):
        p = self._ph()
        assignments = ", ".join(f"{name} = {p}" for name in columns)
        with self._transaction() as cur:
            cur.execute(
                f"UPDATE documentary_scripts SET {assignments}, updated_at = {p} WHERE script_id = {p}",
                (*columns.values(), _now(), script_id),
            )
            if cur.rowcount == 0:
                raise ScriptNotFoundError(script_id)

    def _require_script(self, cur, script_id):
        cur.execute(
            f"SELECT 1 FROM documentary_scripts WHERE script_id = {self._ph()}",
            (script_id,),
        )
        if cur.fetchone() is None:
            raise ScriptNotFoundError(script_id)

    def _insert_entry(self, cur, chapter_id, script_id, chapter_number, attempts):
        p = self._ph()
        cur.execute("SELECT COALESCE(MAX(enqueue_seq), 0) FROM documentary_render_queue")
        seq = cur.fetchone()[0] + 1
        cur.execute(
            f"""
            INSERT INTO documentary_render_queue
            (queue_id, chapter_id, script_id, priority, status, attempt, enqueue_seq, queued_at)
            VALUES ({p}, {p}, {p}, {p}, {p}, {p}, {p}, {p})
            """,
            (
                str(uuid.uuid4()),
                chapter_id,
                script_id,
                chapter_priority(chapter_number),
                ChapterStatus.QUEUED.value,
                int(attempts) + 1,
                seq,
                _now(),
            ),
        )
        cur.execute(
            f"""
            UPDATE documentary_chapters
            SET render_status = {p}, render_error = NULL, render_error_kind = NULL, updated_at = {p}
            WHERE chapter_id = {p}
            """,
            (ChapterStatus.QUEUED.value, _now(), chapter_id),
        )

    def _pop_rendering(self, cur, queue_id) -> Optional[str]:
        p = self._ph()
        cur.execute(
            f"SELECT chapter_id FROM documentary_render_queue WHERE queue_id = {p} AND status = {p}",
            (queue_id, ChapterStatus.RENDERING.value),
        )
        row = cur.fetchone()
        if not row:
            return None
        cur.execute(f"DELETE FROM documentary_render_queue WHERE queue_id = {p}", (queue_id,))
        return row[0]

    def _select_chapter(self, cur, chapter_id) -> Optional[Chapter]:
        cur.execute(
            f"SELECT {CHAPTER_COLUMNS} FROM documentary_chapters WHERE chapter_id = {self._ph()}",
            (chapter_id,),
        )
        row = cur.fetchone()
        return self._chapter_from_row(row) if row else None

    def _select_chapters(self, cur, script_id) -> List[Chapter]:
        cur.execute(
            f"""
            SELECT {CHAPTER_COLUMNS}
            FROM documentary_chapters
            WHERE script_id = {self._ph()}
            ORDER BY chapter_number
            """,
            (script_id,),
        )
        return [self._chapter_from_row(r) for r in cur.fetchall()]

    @staticmethod
    def _chapter_from_row(r) -> Chapter:
        return Chapter(
            chapter_id=r[0],
            script_id=r[1],
            chapter_number=r[2],
            title=r[3] or "",
            narration=r[4] or "",
            visual_markers=_loads(r[5], []),
            template_config=_loads(r[6]),
            transition_type=r[7] or DEFAULT_TRANSITION,
            music_track=r[8],
            duration_minutes=r[9],
            render_status=ChapterStatus(r[10]),
            video_url=r[11],
            video_duration_seconds=r[12],
            narration_audio_url=r[13],
            render_error=r[14],
            render_error_kind=r[15],
            render_attempts=r[16] or 0,
        )

    @staticmethod
    def _script_from_row(r) -> Script:
        return Script(
            script_id=r[0],
            title=r[1] or "",
            credits=_loads(r[2]),
            music_config=_loads(r[3]),
            sources=_loads(r[4], []),
            final_render_status=StitchState(r[5] or StitchState.PENDING.value),
            final_video_url=r[6],
            final_duration_seconds=r[7],
            final_chapter_count=r[8],
            final_render_error=r[9],
            stitched_credits=_loads(r[10]),
            quality_check_passed=None if r[11] is None else bool(r[11]),
            quality_checks=_loads(r[12]),
            quality_check_notes=r[13],
        )

    def _connect(self):
        if self._conn is not None:
            return

        if self.database_url.startswith("sqlite"):
            path = self.database_url.replace("sqlite:///", "")
            self._conn = sqlite3.connect(
                path,
                check_same_thread=False,
                isolation_level=None,
            )
            self.backend = "sqlite"
            logger.info(f"[sql] using sqlite ({path})")

        elif self.database_url.startswith("postgres"):
            self._conn = psycopg2.connect(self.database_url)
            self.backend = "postgres"
            logger.info("[sql] using postgres")

        else:
            raise RuntimeError(
                f"Unsupported DATABASE_URL: {self.database_url}"
            )

        self._init_schema()

    @property
    def conn(self):
        if self._conn is None:
            with self._lock:
                self._connect()
        return self._conn
