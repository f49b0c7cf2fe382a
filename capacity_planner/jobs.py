from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional, Sequence

logger = logging.getLogger(__name__)

JobState = Literal["queued", "running", "done", "failed"]
JobHandler = Callable[..., object]
MAX_MESSAGE_LENGTH = 2000
MAX_FINISHED_JOBS = 200


def _now_iso() -> str:
    """Return current UTC timestamp as ISO string with second precision."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _trim_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Clamp message length to avoid unbounded memory growth."""
    if len(text) <= limit:
        return text
    return text[-limit:]


@dataclass
class Job:
    id: str
    kind: str
    payload: Dict[str, object] = field(default_factory=dict)
    state: JobState = "queued"
    created_at: str = field(default_factory=_now_iso)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind,
            "payload": copy.deepcopy(self.payload),
            "state": self.state,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "message": self.message,
        }


class JobStore:
    """In-memory job registry; each job runs its kind's handler on a daemon thread.

    With ``run_async=False`` jobs run inline on the caller's thread, which the
    batch CLI uses to finish all follow-up work before exiting.
    """

    def __init__(
        self,
        handlers: Optional[Dict[str, JobHandler]] = None,
        run_async: bool = True,
        max_finished: int = MAX_FINISHED_JOBS,
    ) -> None:
        self._jobs: Dict[str, Job] = {}
        self._max_finished = max_finished
        self._handlers: Dict[str, JobHandler] = dict(handlers or {})
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._run_async = run_async

    def register(self, kind: str, handler: JobHandler) -> None:
        with self._lock:
            self._handlers[kind] = handler

    def create_job(self, kind: str, payload: Dict[str, object]) -> Job:
        job = Job(id=str(uuid.uuid4()), kind=kind, payload=dict(payload))
        with self._lock:
            self._jobs[job.id] = job
        return job

    def start_job(self, job: Job) -> None:
        if not self._run_async:
            self._run_job(job.id)
            return
        thread = threading.Thread(target=self._run_job, args=(job.id,), daemon=True)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def submit(self, kind: str, payload: Dict[str, object]) -> Job:
        job = self.create_job(kind, payload)
        self.start_job(job)
        return job

    def enqueue_recompute(self, scenario_id: str, reason: str) -> Job:
        return self.submit("scenario_recompute", {"scenario_id": scenario_id, "reason": reason})

    def enqueue_view_refresh(
        self, scope: str, reason: str, scenario_ids: Sequence[str] = ()
    ) -> Job:
        return self.submit(
            "view_refresh",
            {"scope": scope, "reason": reason, "scenario_ids": list(scenario_ids)},
        )

    def enqueue_drift_check(self, scenario_id: Optional[str] = None) -> Job:
        return self.submit("drift_check", {"scenario_id": scenario_id})

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_jobs(self) -> List[Job]:
        with self._lock:
            jobs = list(self._jobs.values())
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [copy.deepcopy(job) for job in jobs]

    def wait(self, timeout: Optional[float] = None) -> None:
        """Join every thread started so far."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)

    def _evict_finished(self) -> None:
        # caller holds the lock; dicts keep insertion order, so oldest go first
        finished = [j.id for j in self._jobs.values() if j.state in ("done", "failed")]
        for job_id in finished[: max(0, len(finished) - self._max_finished)]:
            del self._jobs[job_id]

    def _update_job(self, job_id: str, **changes: object) -> None:
        with self._lock:
            job = self._jobs[job_id]
            for key, value in changes.items():
                if key == "message" and isinstance(value, str):
                    value = _trim_message(value)
                setattr(job, key, value)
            if job.state in ("done", "failed"):
                self._evict_finished()

    def _run_job(self, job_id: str) -> None:
        self._update_job(job_id, state="running", started_at=_now_iso())
        with self._lock:
            job = self._jobs[job_id]
            kind, payload = job.kind, dict(job.payload)
            handler = self._handlers.get(kind)
        if handler is None:
            self._update_job(
                job_id, state="done", finished_at=_now_iso(), message=f"no handler for {kind}"
            )
            return
        try:
            result = handler(**payload)
            self._update_job(
                job_id,
                state="done",
                finished_at=_now_iso(),
                message="" if result is None else str(result),
            )
        except Exception as exc:
            logger.warning("job %s (%s) failed: %s", job_id, kind, exc)
            self._update_job(
                job_id,
                state="failed",
                finished_at=_now_iso(),
                message=_trim_message(str(exc)),
            )
