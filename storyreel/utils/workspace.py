"""
Job Workspace
Per-job scratch directory removed on every exit path
"""

import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from .logger import get_logger

logger = get_logger()


def resolve_job_dir(root: str, job_id: str) -> Path:
    """
    Resolve `root/job_id`, refusing ids that escape the root

    Raises:
        ValueError: If job_id creates a path outside root
    """
    base = Path(root).resolve()
    job_dir = (base / str(job_id)).resolve()
    if job_dir == base or not job_dir.is_relative_to(base):
        raise ValueError(f"Invalid job workspace path for job {job_id!r}")
    return job_dir


@asynccontextmanager
async def job_workspace(root: str, job_id: str) -> AsyncIterator[Path]:
    """Create a fresh directory for one job attempt and remove it afterwards"""
    job_dir = resolve_job_dir(root, job_id)

    # A previous crashed attempt may have left files behind
    if job_dir.exists():
        shutil.rmtree(job_dir, ignore_errors=True)
    job_dir.mkdir(parents=True)

    try:
        yield job_dir
    finally:
        shutil.rmtree(job_dir, ignore_errors=True)
        logger.debug(f"Removed workspace {job_dir}")
