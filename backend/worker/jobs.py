"""
Durable job queue backed by the `jobs` table.

Jobs are leased to one worker at a time with a compare-and-set update, so a
job is never run by two workers concurrently. Leases expire; a job whose
worker disappeared is picked up again (at-least-once delivery). Failed jobs
are retried with exponential backoff up to a fixed number of attempts.
Terminal jobs are pruned to a bounded history.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging

from sqlalchemy import func, text
from sqlalchemy.orm import Session, sessionmaker

from api.database import Job
from .base import COUNTRY_PRIORITY

logger = logging.getLogger(__name__)

JOB_NAME = 'scrape-estate'
STALLED_REASON = 'job stalled more than allowable limit'


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"
    PAUSED = "paused"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands datetimes back without tzinfo; they were stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class JobRecord:
    """Detached view of a job row."""
    id: str
    name: str
    data: Dict[str, Any]
    priority: int
    state: str
    progress: int = 0
    attempts_made: int = 0
    max_attempts: int = 3
    result: Optional[Dict[str, Any]] = None
    failed_reason: Optional[str] = None
    lease_owner: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    available_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Job) -> 'JobRecord':
        return cls(
            id=str(row.id),
            name=row.name,
            data=json.loads(row.data) if row.data else {},
            priority=row.priority,
            state=row.state,
            progress=row.progress or 0,
            attempts_made=row.attempts_made or 0,
            max_attempts=row.max_attempts,
            result=json.loads(row.result) if row.result else None,
            failed_reason=row.failed_reason,
            lease_owner=row.lease_owner,
            created_at=_as_utc(row.created_at),
            processed_at=_as_utc(row.processed_at),
            finished_at=_as_utc(row.finished_at),
            available_at=_as_utc(row.available_at),
        )


def priority_for_country(country: str) -> int:
    """AU jobs run before NZ jobs (lower value is dequeued first)."""
    if country not in COUNTRY_PRIORITY:
        raise ValueError(f"Unsupported country: {country!r}")
    return COUNTRY_PRIORITY[country]


class JobQueue:
    """
    Job queue over a SQLAlchemy session factory.

    Usage:
        queue = JobQueue(QueueSessionLocal)
        job = queue.enqueue({'client_name': 'Acme', ...})
        leased = queue.lease('worker-1:0')
        queue.update_progress(leased.id, 50)
        queue.complete(leased.id, {'listings_processed': 2}, 'worker-1:0')
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        attempts: int = 3,
        backoff_seconds: float = 2.0,
        lease_seconds: float = 30.0,
        keep_completed: int = 10,
        keep_failed: int = 5,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._session_factory = session_factory
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.lease_seconds = lease_seconds
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, session_factory: sessionmaker) -> 'JobQueue':
        return cls(
            session_factory,
            attempts=settings.job_attempts,
            backoff_seconds=settings.job_backoff_seconds,
            lease_seconds=settings.lease_seconds,
            keep_completed=settings.keep_completed_jobs,
            keep_failed=settings.keep_failed_jobs,
        )

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, data: Mapping[str, Any], name: str = JOB_NAME) -> JobRecord:
        """
        Add a job. Priority is derived from the job's country.

        Raises:
            ValueError: no seed URLs, or an unsupported country
        """
        payload = dict(data)
        if not (payload.get('buy_urls') or payload.get('sold_urls')):
            raise ValueError('At least one of buy_urls or sold_urls must be provided')
        priority = priority_for_country(payload.get('country'))

        with self._session_factory() as db:
            job = Job(
                name=name,
                data=json.dumps(payload),
                priority=priority,
                state=JobState.WAITING.value,
                max_attempts=self.attempts,
                created_at=self._clock(),
            )
            db.add(job)
            db.commit()
            db.refresh(job)
            logger.info(f"Queued job {job.id} ({payload.get('client_name')} / {payload.get('area_name')}, priority {priority})")
            return JobRecord.from_row(job)

    def pause(self) -> int:
        """Hold all waiting jobs. Returns the number of jobs paused."""
        with self._session_factory() as db:
            count = db.query(Job).filter(Job.state == JobState.WAITING.value).update(
                {Job.state: JobState.PAUSED.value}, synchronize_session=False
            )
            db.commit()
            return count

    def resume(self) -> int:
        """Release paused jobs back to waiting."""
        with self._session_factory() as db:
            count = db.query(Job).filter(Job.state == JobState.PAUSED.value).update(
                {Job.state: JobState.WAITING.value}, synchronize_session=False
            )
            db.commit()
            return count

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _promote_delayed(self, db: Session, now: datetime) -> None:
        promoted = db.query(Job).filter(
            Job.state == JobState.DELAYED.value,
            Job.available_at <= now,
        ).update({Job.state: JobState.WAITING.value}, synchronize_session=False)
        if promoted:
            logger.debug(f"Promoted {promoted} delayed job(s)")

    def _stalled_job_ids(self, db: Session, now: datetime) -> List[int]:
        return [row.id for row in db.query(Job.id).filter(
            Job.state == JobState.ACTIVE.value,
            Job.lease_expires_at < now,
        ).all()]

    def _recover_stalled(self, db: Session, now: datetime) -> None:
        recovered = 0
        for job_id in self._stalled_job_ids(db, now):
            # Guarded like lease(): a job another worker already recovered is left alone
            still_stalled = db.query(Job).filter(
                Job.id == job_id,
                Job.state == JobState.ACTIVE.value,
                Job.lease_expires_at < now,
            )
            requeued = still_stalled.filter(Job.attempts_made + 1 < Job.max_attempts).update({
                Job.state: JobState.WAITING.value,
                Job.attempts_made: Job.attempts_made + 1,
                Job.lease_owner: None,
                Job.lease_expires_at: None,
            }, synchronize_session=False)
            if requeued:
                recovered += 1
                logger.warning(f"Job {job_id} lease expired, requeued")
                continue

            failed = still_stalled.filter(Job.attempts_made + 1 >= Job.max_attempts).update({
                Job.state: JobState.FAILED.value,
                Job.attempts_made: Job.attempts_made + 1,
                Job.lease_owner: None,
                Job.lease_expires_at: None,
                Job.failed_reason: STALLED_REASON,
                Job.finished_at: now,
            }, synchronize_session=False)
            if failed:
                recovered += 1
                logger.error(f"Job {job_id} stalled and has no attempts left")

        if recovered:
            self._prune(db)

    def lease(self, worker_id: str) -> Optional[JobRecord]:
        """
        Claim the next job for a worker, or None when nothing is ready.

        Order: lowest priority value first, then oldest job id.
        """
        with self._session_factory() as db:
            now = self._clock()
            self._promote_delayed(db, now)
            self._recover_stalled(db, now)
            db.commit()

            # Another worker may claim the same candidate; retry on a lost race
            for _ in range(5):
                candidate = db.query(Job.id).filter(
                    Job.state == JobState.WAITING.value,
                ).order_by(Job.priority.asc(), Job.id.asc()).first()
                if candidate is None:
                    return None

                claimed = db.query(Job).filter(
                    Job.id == candidate.id,
                    Job.state == JobState.WAITING.value,
                ).update({
                    Job.state: JobState.ACTIVE.value,
                    Job.lease_owner: worker_id,
                    Job.lease_expires_at: now + timedelta(seconds=self.lease_seconds),
                    Job.processed_at: now,
                }, synchronize_session=False)
                db.commit()

                if claimed == 1:
                    job = db.get(Job, candidate.id)
                    logger.info(f"Worker {worker_id} leased job {job.id}")
                    return JobRecord.from_row(job)

            return None

    def extend_lease(self, job_id, worker_id: str) -> bool:
        """Renew a lease. False means the worker no longer owns the job."""
        with self._session_factory() as db:
            renewed = db.query(Job).filter(
                Job.id == int(job_id),
                Job.state == JobState.ACTIVE.value,
                Job.lease_owner == worker_id,
            ).update({
                Job.lease_expires_at: self._clock() + timedelta(seconds=self.lease_seconds),
            }, synchronize_session=False)
            db.commit()
            return renewed == 1

    def update_progress(self, job_id, percent: int) -> None:
        """Raise a job's progress. Lower or equal values are ignored."""
        percent = max(0, min(100, int(percent)))
        with self._session_factory() as db:
            db.query(Job).filter(
                Job.id == int(job_id),
                Job.progress < percent,
            ).update({Job.progress: percent}, synchronize_session=False)
            db.commit()

    def _owned_active_job(self, db: Session, job_id, worker_id: Optional[str]) -> Optional[Job]:
        job = db.get(Job, int(job_id))
        if job is None or job.state != JobState.ACTIVE.value:
            logger.warning(f"Job {job_id} is not active; ignoring result from {worker_id}")
            return None
        if worker_id is not None and job.lease_owner != worker_id:
            logger.warning(f"Worker {worker_id} lost the lease on job {job_id}")
            return None
        return job

    def complete(self, job_id, result: Mapping[str, Any], worker_id: Optional[str] = None) -> bool:
        """Mark an active job completed with its result."""
        with self._session_factory() as db:
            job = self._owned_active_job(db, job_id, worker_id)
            if job is None:
                return False

            job.state = JobState.COMPLETED.value
            job.result = json.dumps(dict(result), default=str)
            job.finished_at = self._clock()
            job.lease_owner = None
            job.lease_expires_at = None
            db.flush()
            self._prune(db)
            db.commit()
            logger.info(f"✅ Job {job_id} completed")
            return True

    def fail(self, job_id, error: str, worker_id: Optional[str] = None) -> bool:
        """
        Record a failed attempt.

        The job is retried after `backoff_seconds * 2 ** (attempts_made - 1)`
        while attempts remain, otherwise it becomes failed.
        """
        with self._session_factory() as db:
            job = self._owned_active_job(db, job_id, worker_id)
            if job is None:
                return False

            now = self._clock()
            job.attempts_made = (job.attempts_made or 0) + 1
            job.failed_reason = error
            job.lease_owner = None
            job.lease_expires_at = None

            if job.attempts_made < job.max_attempts:
                delay = self.backoff_seconds * (2 ** (job.attempts_made - 1))
                job.state = JobState.DELAYED.value
                job.available_at = now + timedelta(seconds=delay)
                logger.warning(
                    f"Job {job_id} failed (attempt {job.attempts_made}/{job.max_attempts}), "
                    f"retrying in {delay:.0f}s: {error}"
                )
            else:
                job.state = JobState.FAILED.value
                job.finished_at = now
                logger.error(f"❌ Job {job_id} failed: {error}")

            db.flush()
            self._prune(db)
            db.commit()
            return True

    def _prune(self, db: Session) -> None:
        """Keep only the newest terminal jobs."""
        for state, keep in ((JobState.COMPLETED, self.keep_completed), (JobState.FAILED, self.keep_failed)):
            stale_ids = [
                row.id for row in db.query(Job.id).filter(Job.state == state.value)
                .order_by(Job.finished_at.desc(), Job.id.desc())
                .offset(keep)
                .all()
            ]
            if stale_ids:
                db.query(Job).filter(Job.id.in_(stale_ids)).delete(synchronize_session=False)
                logger.debug(f"Pruned {len(stale_ids)} {state.value} job(s)")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_job(self, job_id) -> Optional[JobRecord]:
        try:
            key = int(job_id)
        except (TypeError, ValueError):
            return None
        with self._session_factory() as db:
            job = db.get(Job, key)
            return JobRecord.from_row(job) if job else None

    def get_state(self, job_id) -> Optional[str]:
        job = self.get_job(job_id)
        return job.state if job else None

    def get_counts(self) -> Dict[str, int]:
        """Number of jobs in every state (zero for empty states)."""
        counts = {state.value: 0 for state in JobState}
        with self._session_factory() as db:
            rows = db.query(Job.state, func.count(Job.id)).group_by(Job.state).all()
        for state, count in rows:
            counts[state] = count
        return counts

    def list_jobs(self, state: str, limit: int = 10) -> List[JobRecord]:
        """Jobs in a state; terminal states newest first, others in dequeue order."""
        with self._session_factory() as db:
            query = db.query(Job).filter(Job.state == JobState(state).value)
            if state in (JobState.COMPLETED.value, JobState.FAILED.value):
                query = query.order_by(Job.finished_at.desc(), Job.id.desc())
            else:
                query = query.order_by(Job.priority.asc(), Job.id.asc())
            return [JobRecord.from_row(job) for job in query.limit(limit).all()]

    def ping(self) -> bool:
        """Round-trip to the queue store. Raises if unreachable."""
        with self._session_factory() as db:
            db.execute(text('SELECT 1'))
        return True
