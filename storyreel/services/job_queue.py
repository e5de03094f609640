"""
Job Queue Service
Durable SQLite-backed queue and a bounded pool of async workers with retry/backoff.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Set

import aiosqlite

from ..models.job import JobPayload
from ..utils.exceptions import is_retryable
from ..utils.logger import get_logger
from ..utils.retry import RetryPolicy

logger = get_logger()

WAITING = "waiting"
ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"

STALLED_ERROR = "stalled on final attempt"


@dataclass
class QueueEntry:
    """A reserved delivery of one job"""
    job_id: str
    payload: JobPayload
    attempt: int
    max_attempts: int

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


JobHandler = Callable[[QueueEntry], Awaitable[None]]


@dataclass
class StalledRecovery:
    """Outcome of returning abandoned entries after a restart"""
    requeued: int = 0
    dead_lettered: List[str] = field(default_factory=list)


class DurableJobQueue:
    """Named at-least-once queue persisted with aiosqlite."""

    def __init__(
        self,
        db_path: str,
        name: str = "video-processing",
        remove_on_complete: bool = False,
        remove_on_fail: bool = False
    ):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.name = name
        self.remove_on_complete = remove_on_complete
        self.remove_on_fail = remove_on_fail
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
                    CREATE TABLE IF NOT EXISTS queue_entries (
                        queue TEXT NOT NULL,
                        job_id TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        state TEXT NOT NULL,
                        attempts INTEGER NOT NULL DEFAULT 0,
                        max_attempts INTEGER NOT NULL,
                        available_at REAL NOT NULL,
                        last_error TEXT,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL,
                        PRIMARY KEY (queue, job_id)
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_queue_ready ON queue_entries(queue, state, available_at)"
                )
                await conn.commit()

            self._initialized = True
            logger.info(f"Queue '{self.name}' initialized at {self.db_path}")

    async def add(self, payload: JobPayload, max_attempts: int = 3) -> bool:
        """Enqueue a job. Returns False if the job id is already queued."""
        await self.initialize()
        now = time.time()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                cursor = await conn.execute(
                    """
                    INSERT OR IGNORE INTO queue_entries
                        (queue, job_id, payload, state, attempts, max_attempts, available_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?)
                    """,
                    (self.name, payload.job_id, json.dumps(payload.to_wire()), WAITING, max_attempts, now, now, now),
                )
                added = cursor.rowcount == 1
                await conn.commit()
        return added

    async def reserve(self) -> Optional[QueueEntry]:
        """Take the oldest ready entry and mark it active."""
        await self.initialize()
        now = time.time()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                cursor = await conn.execute(
                    """
                    SELECT job_id, payload, attempts, max_attempts FROM queue_entries
                    WHERE queue = ? AND state = ? AND available_at <= ?
                    ORDER BY available_at, created_at
                    LIMIT 1
                    """,
                    (self.name, WAITING, now),
                )
                row = await cursor.fetchone()
                await cursor.close()
                if row is None:
                    return None

                job_id, payload, attempts, max_attempts = row
                await conn.execute(
                    """
                    UPDATE queue_entries SET state = ?, attempts = ?, updated_at = ?
                    WHERE queue = ? AND job_id = ?
                    """,
                    (ACTIVE, attempts + 1, now, self.name, job_id),
                )
                await conn.commit()

        return QueueEntry(
            job_id=job_id,
            payload=JobPayload.model_validate(json.loads(payload)),
            attempt=attempts + 1,
            max_attempts=max_attempts,
        )

    async def ack(self, job_id: str):
        """Mark an active entry completed."""
        await self._finish(job_id, COMPLETED, None, self.remove_on_complete)

    async def nack(self, job_id: str, error: str, retry_in: Optional[float] = None):
        """
        Release a failed delivery

        Args:
            retry_in: seconds until redelivery, None moves the entry to the failed set
        """
        if retry_in is None:
            await self._finish(job_id, FAILED, error, self.remove_on_fail)
            return

        await self.initialize()
        now = time.time()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute(
                    """
                    UPDATE queue_entries SET state = ?, available_at = ?, last_error = ?, updated_at = ?
                    WHERE queue = ? AND job_id = ?
                    """,
                    (WAITING, now + retry_in, error, now, self.name, job_id),
                )
                await conn.commit()

    async def _finish(self, job_id: str, state: str, error: Optional[str], remove: bool):
        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                if remove:
                    await conn.execute(
                        "DELETE FROM queue_entries WHERE queue = ? AND job_id = ?",
                        (self.name, job_id),
                    )
                else:
                    await conn.execute(
                        """
                        UPDATE queue_entries SET state = ?, last_error = ?, updated_at = ?
                        WHERE queue = ? AND job_id = ?
                        """,
                        (state, error, time.time(), self.name, job_id),
                    )
                await conn.commit()

    async def recover_stalled(self) -> StalledRecovery:
        """
        Return entries left active by a dead process to the waiting set

        Entries that already used their last attempt go to the failed set
        and their job ids are reported so the jobs can be failed too.
        """
        await self.initialize()
        now = time.time()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                cursor = await conn.execute(
                    """
                    SELECT job_id FROM queue_entries
                    WHERE queue = ? AND state = ? AND attempts >= max_attempts
                    """,
                    (self.name, ACTIVE),
                )
                exhausted = [row[0] for row in await cursor.fetchall()]
                await cursor.close()

                cursor = await conn.execute(
                    """
                    UPDATE queue_entries SET state = ?, available_at = ?, updated_at = ?
                    WHERE queue = ? AND state = ? AND attempts < max_attempts
                    """,
                    (WAITING, now, now, self.name, ACTIVE),
                )
                requeued = cursor.rowcount
                await conn.execute(
                    """
                    UPDATE queue_entries SET state = ?, last_error = ?, updated_at = ?
                    WHERE queue = ? AND state = ?
                    """,
                    (FAILED, STALLED_ERROR, now, self.name, ACTIVE),
                )
                await conn.commit()

        if requeued:
            logger.warning(f"Recovered {requeued} stalled job(s) in queue '{self.name}'")
        if exhausted:
            logger.warning(f"Dead-lettered {len(exhausted)} job(s) stalled on their final attempt: {exhausted}")
        return StalledRecovery(requeued=requeued, dead_lettered=exhausted)

    async def get_entry(self, job_id: str) -> Optional[Dict]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(
                "SELECT * FROM queue_entries WHERE queue = ? AND job_id = ?",
                (self.name, job_id),
            )
            row = await cursor.fetchone()
            await cursor.close()
        return dict(row) if row else None

    async def stats(self) -> Dict[str, int]:
        """Entry counts per state."""
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute(
                "SELECT state, COUNT(*) FROM queue_entries WHERE queue = ? GROUP BY state",
                (self.name,),
            )
            rows = await cursor.fetchall()
            await cursor.close()

        counts = {WAITING: 0, ACTIVE: 0, COMPLETED: 0, FAILED: 0}
        counts.update({state: count for state, count in rows})
        return counts


class JobQueueConsumer:
    """Worker pool pulling from a DurableJobQueue with controlled concurrency."""

    def __init__(
        self,
        queue: DurableJobQueue,
        handler: JobHandler,
        policy: RetryPolicy,
        concurrency: int = 1,
        poll_interval: float = 1.0
    ):
        self.queue = queue
        self.handler = handler
        self.policy = policy
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self._workers: List[asyncio.Task] = []
        self._running = False
        self._stopping = asyncio.Event()
        self._active_ids: Set[str] = set()

    async def start(self):
        """Start worker tasks."""
        if self._running:
            return

        self._running = True
        self._stopping.clear()
        self._workers = [
            asyncio.create_task(self._worker_loop(index + 1))
            for index in range(self.concurrency)
        ]
        logger.info(f"Job consumer started on '{self.queue.name}' (workers={self.concurrency})")

    async def stop(self):
        """Stop taking new jobs and wait for the running ones to finish."""
        if not self._running:
            return

        self._running = False
        self._stopping.set()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Job consumer stopped")

    async def add(self, payload: JobPayload) -> bool:
        return await self.queue.add(payload, max_attempts=self.policy.max_attempts)

    async def stats(self) -> dict:
        """Current queue statistics."""
        counts = await self.queue.stats()
        return {
            **counts,
            "in_flight": len(self._active_ids),
            "workers": self.concurrency,
            "running": self._running,
        }

    async def _worker_loop(self, worker_id: int):
        while self._running:
            try:
                processed = await self.run_once(worker_id)
            except Exception as exc:
                # Queue storage failure; keep the worker alive
                logger.exception(f"Worker {worker_id} could not reserve a job: {exc}")
                processed = False

            if not processed:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def run_once(self, worker_id: int = 0) -> bool:
        """Process at most one ready job. Returns False if none was ready."""
        entry = await self.queue.reserve()
        if entry is None:
            return False
        await self._process(entry, worker_id)
        return True

    async def _process(self, entry: QueueEntry, worker_id: int):
        job_id = entry.job_id
        self._active_ids.add(job_id)
        logger.info(
            f"Worker {worker_id} started job {job_id} "
            f"(attempt {entry.attempt}/{entry.max_attempts})"
        )
        try:
            await self.handler(entry)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            if entry.is_final_attempt or not is_retryable(exc):
                await self.queue.nack(job_id, message, retry_in=None)
                logger.error(f"Job {job_id} failed permanently after {entry.attempt} attempt(s): {message}")
            else:
                delay = self.policy.delay_for(entry.attempt)
                await self.queue.nack(job_id, message, retry_in=delay)
                logger.warning(f"Job {job_id} failed: {message}. Retrying in {delay:.0f}s")
        else:
            await self.queue.ack(job_id)
            logger.info(f"Job {job_id} completed")
        finally:
            self._active_ids.discard(job_id)
