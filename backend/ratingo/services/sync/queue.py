"""
Queue-based scheduling over the same per-item engine.

A job snapshots one trending list into `sync_tasks` rows; workers claim
batches of pending tasks and run them through `process_show` /
`process_movie`. Task states move pending -> processing -> done | error and
every claim increments `attempts`. Error tasks keep `last_error` and are not
retried here.
"""
import json
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ratingo.core.config import settings
from ratingo.models import MEDIA_MOVIE, MEDIA_SHOW, SyncJob, SyncTask
from ratingo.schemas import TrendingItem
from ratingo.services.sync.context import SessionFactory, SyncContext, create_sync_context
from ratingo.services.sync.engine import processor_for
from ratingo.services.sync.metrics import build_monthly_maps, compute_max_watchers
from ratingo.services.sync.trending import fetch_trending
from ratingo.utils.concurrency import async_pool
from ratingo.utils.timezone import utc_now

logger = logging.getLogger(__name__)

JOB_TYPES = {MEDIA_SHOW: "trending_shows", MEDIA_MOVIE: "trending_movies"}
MEDIA_BY_JOB_TYPE = {v: k for k, v in JOB_TYPES.items()}

MAX_CLAIM = 50


@dataclass
class ClaimedTask:
    id: int
    job_id: int
    media_type: str
    tmdb_id: int
    payload: dict


async def enqueue_trending_job(media_type: str, ctx: Optional[SyncContext] = None) -> int:
    """Snapshot the current trending list as one job with a pending task per item.

    Raises TrendingUnavailableError when the list cannot be fetched.
    """
    ctx = ctx or create_sync_context(media_type)
    items = await fetch_trending(ctx, settings.trending_limit)
    max_watchers = compute_max_watchers([i.watchers for i in items], settings.min_max_watchers)
    queued = [i for i in items if i.tmdb_id]

    with ctx.session_factory() as session, session.begin():
        job = SyncJob(
            type=JOB_TYPES[media_type],
            status="pending",
            stats=json.dumps({"fetched": len(items), "queued": len(queued), "max_watchers": max_watchers}),
        )
        session.add(job)
        session.flush()
        for item in queued:
            session.add(SyncTask(
                job_id=job.id,
                tmdb_id=item.tmdb_id,
                payload=json.dumps({"item": item.model_dump(), "max_watchers": max_watchers}),
                status="pending",
            ))
        job_id = job.id
    logger.info(f"Enqueued {JOB_TYPES[media_type]} job {job_id} with {len(queued)} tasks")
    return job_id


def claim_pending_tasks(session: Session, limit: int) -> List[ClaimedTask]:
    """Move up to `limit` (clamped to 1..50) pending tasks to processing, oldest first."""
    limit = max(1, min(int(limit or 1), MAX_CLAIM))
    rows = session.execute(
        select(SyncTask, SyncJob.type)
        .join(SyncJob, SyncJob.id == SyncTask.job_id)
        .where(SyncTask.status == "pending")
        .order_by(SyncTask.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    ).all()

    claimed = []
    now = utc_now()
    for task, job_type in rows:
        task.status = "processing"
        task.attempts = (task.attempts or 0) + 1
        task.updated_at = now
        claimed.append(ClaimedTask(
            id=task.id,
            job_id=task.job_id,
            media_type=MEDIA_BY_JOB_TYPE[job_type],
            tmdb_id=task.tmdb_id,
            payload=json.loads(task.payload),
        ))
    job_ids = {t.job_id for t in claimed}
    if job_ids:
        session.execute(
            update(SyncJob)
            .where(SyncJob.id.in_(job_ids), SyncJob.status == "pending")
            .values(status="running", updated_at=now)
        )
    session.flush()
    return claimed


def _finish_task(session_factory: SessionFactory, task_id: int, error: Optional[str]) -> None:
    with session_factory() as session, session.begin():
        task = session.get(SyncTask, task_id)
        task.status = "error" if error else "done"
        task.last_error = error
        task.updated_at = utc_now()


def finalize_job(session: Session, job_id: int) -> bool:
    """Close the job once no task is pending or processing. Returns True when closed."""
    counts = dict(
        session.execute(
            select(SyncTask.status, func.count()).where(SyncTask.job_id == job_id).group_by(SyncTask.status)
        ).all()
    )
    if counts.get("pending") or counts.get("processing"):
        return False
    job = session.get(SyncJob, job_id)
    if job is None or job.status in ("done", "error"):
        return False
    stats = json.loads(job.stats or "{}")
    stats.update(done=counts.get("done", 0), error=counts.get("error", 0))
    job.stats = json.dumps(stats)
    # a job only fails when no task succeeded
    job.status = "error" if counts.get("error") and not counts.get("done") else "done"
    job.updated_at = utc_now()
    return True


async def process_pending_tasks(
    limit: Optional[int] = None,
    session_factory: Optional[SessionFactory] = None,
    context_factory: Optional[Callable[[str], SyncContext]] = None,
) -> Dict[str, int]:
    """Claim a batch of tasks, run each through the engine and record the outcome."""
    if session_factory is None:
        from ratingo.core.database import SessionLocal
        session_factory = SessionLocal
    context_factory = context_factory or (lambda media_type: create_sync_context(media_type, session_factory=session_factory))

    with session_factory() as session, session.begin():
        claimed = claim_pending_tasks(session, limit or settings.queue_batch_size)
    stats: Counter = Counter(claimed=len(claimed))
    if not claimed:
        return dict(stats)

    # one context per job: tasks of a job share its max_watchers baseline
    monthly = {}
    contexts: Dict[int, SyncContext] = {}
    for task in claimed:
        if task.job_id in contexts:
            continue
        ctx = context_factory(task.media_type)
        if task.media_type not in monthly:
            monthly[task.media_type] = await build_monthly_maps(ctx, limit=settings.monthly_limit)
        ctx.monthly = monthly[task.media_type]
        ctx.max_watchers = task.payload.get("max_watchers") or ctx.max_watchers
        contexts[task.job_id] = ctx

    async def run(task: ClaimedTask) -> None:
        ctx = contexts[task.job_id]
        try:
            item = TrendingItem.model_validate(task.payload["item"])
            res = await processor_for(task.media_type)(item, ctx)
            error = res.error
        except Exception as e:
            logger.error(f"Sync task {task.id} failed: {e}", exc_info=True)
            error = str(e)
        _finish_task(session_factory, task.id, error)
        stats["error" if error else "done"] += 1

    await async_pool(settings.sync_concurrency, claimed, run)

    with session_factory() as session, session.begin():
        for job_id in sorted({t.job_id for t in claimed}):
            if finalize_job(session, job_id):
                stats["jobs_finalized"] += 1
    logger.info(f"Sync queue batch: {dict(stats)}")
    return dict(stats)
