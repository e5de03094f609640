"""
Project Store Service
SQLite-backed persistence for Job and Video documents.
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import aiosqlite

from ..models.job import Job, JobStatusView
from ..models.video import Video, VideoStatus
from ..utils.exceptions import NotFoundError, JobConflictError
from ..utils.logger import get_logger

logger = get_logger()


class ProjectStore:
    """Persistent storage for jobs and videos, keyed by id with an updated timestamp."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    async def initialize(self):
        """Initialize database schema."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS jobs (
                        id TEXT PRIMARY KEY,
                        video_id TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS videos (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_jobs_video_id ON jobs(video_id)"
                )
                await conn.commit()

            self._initialized = True
            logger.info(f"Project store initialized at {self.db_path}")

    @staticmethod
    def _to_json(model) -> str:
        return json.dumps(model.model_dump(mode="json"), ensure_ascii=False)

    @staticmethod
    async def _write_job(conn: aiosqlite.Connection, job: Job):
        await conn.execute(
            """
            INSERT INTO jobs (id, video_id, payload, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                payload = excluded.payload,
                updated_at = excluded.updated_at
            """,
            (job.job_id, job.video_id, ProjectStore._to_json(job), job.updated_at.isoformat()),
        )

    @staticmethod
    async def _write_video(conn: aiosqlite.Connection, video: Video):
        await conn.execute(
            """
            INSERT INTO videos (id, user_id, payload, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                payload = excluded.payload,
                updated_at = excluded.updated_at
            """,
            (video.video_id, video.user_id, ProjectStore._to_json(video), video.updated_at.isoformat()),
        )

    async def upsert_job(self, job: Job):
        """Insert or update a job record."""
        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await self._write_job(conn, job)
                await conn.commit()

    async def upsert_video(self, video: Video):
        """Insert or update a video record."""
        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await self._write_video(conn, video)
                await conn.commit()

    async def save(self, job: Job, video: Video):
        """Write a job and its video in one transaction."""
        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await self._write_job(conn, job)
                await self._write_video(conn, video)
                await conn.commit()

    async def _fetch_payload(self, table: str, record_id: str) -> Optional[str]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute(f"SELECT payload FROM {table} WHERE id = ?", (record_id,))
            row = await cursor.fetchone()
            await cursor.close()
        return row[0] if row else None

    async def get_job(self, job_id: str) -> Job:
        payload = await self._fetch_payload("jobs", job_id)
        if payload is None:
            raise NotFoundError("job", job_id)
        return Job.model_validate_json(payload)

    async def get_video(self, video_id: str) -> Video:
        payload = await self._fetch_payload("videos", video_id)
        if payload is None:
            raise NotFoundError("video", video_id)
        return Video.model_validate_json(payload)

    async def find_video(self, video_id: str) -> Optional[Video]:
        payload = await self._fetch_payload("videos", video_id)
        return Video.model_validate_json(payload) if payload else None

    async def list_jobs(self, video_id: Optional[str] = None) -> List[Job]:
        """Return jobs, optionally filtered by video id."""
        await self.initialize()
        query = "SELECT payload FROM jobs"
        params: tuple = ()

        if video_id:
            query += " WHERE video_id = ?"
            params = (video_id,)

        query += " ORDER BY updated_at DESC"

        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            await cursor.close()

        jobs: List[Job] = []
        for (payload,) in rows:
            try:
                jobs.append(Job.model_validate_json(payload))
            except ValueError as exc:
                logger.warning(f"Skipping invalid stored job payload: {exc}")
        return jobs

    async def get_job_status(self, job_id: str) -> JobStatusView:
        return JobStatusView.from_job(await self.get_job(job_id))

    async def create_job(self, job: Job, video: Video) -> Video:
        """
        Register a queued job as the video's current job

        Raises:
            JobConflictError: the video's current job is still queued or processing
        """
        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                stored = await self._load_in(conn, "videos", video.video_id)
                current = Video.model_validate_json(stored) if stored else video

                if current.current_job_id and current.current_job_id != job.job_id:
                    active_payload = await self._load_in(conn, "jobs", current.current_job_id)
                    if active_payload and not Job.model_validate_json(active_payload).is_terminal:
                        raise JobConflictError(current.video_id, current.current_job_id)

                current.current_job_id = job.job_id
                current.status = VideoStatus.QUEUED
                current.record(job.job_id, job.status, job.stage, f"{job.type.value} queued")

                await self._write_job(conn, job)
                await self._write_video(conn, current)
                await conn.commit()

        return current

    @staticmethod
    async def _load_in(conn: aiosqlite.Connection, table: str, record_id: str) -> Optional[str]:
        cursor = await conn.execute(f"SELECT payload FROM {table} WHERE id = ?", (record_id,))
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row else None
