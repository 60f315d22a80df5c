"""Job record store: field-path updates, conditional writes, change feed.

Records are JSON documents addressed by ``{jobs_prefix}/{jobId}``. Update keys
are ``/``-separated field paths (``"metadata/updatedAt"``); a ``None`` value
deletes the field, so terminal writes can clear polling metadata in the same
call that sets the status.
"""

from __future__ import annotations

import copy
import json
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional
from uuid import uuid4

import redis
from redis.exceptions import WatchError

from .config import Settings

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Predicate = Callable[[Record], bool]


class StoreConflictError(RuntimeError):
    """Optimistic transaction kept losing races and gave up."""


def apply_updates(record: Mapping[str, Any], updates: Mapping[str, Any]) -> Record:
    """Return a copy of ``record`` with field-path ``updates`` applied."""

    result: Record = copy.deepcopy(dict(record))
    for path, value in updates.items():
        parts = [part for part in path.split("/") if part]
        if not parts:
            raise ValueError(f"Empty field path: {path!r}")
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    node = None
                    break
                child = {}
                node[part] = child
            node = child
        if node is None:
            continue
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)
    return result


def status_in(*statuses: str) -> Predicate:
    allowed = {str(getattr(s, "value", s)) for s in statuses}

    def _predicate(record: Record) -> bool:
        return record.get("status") in allowed

    return _predicate


class JobStore(ABC):
    def __init__(self, prefix: str) -> None:
        self.prefix = prefix.strip("/")

    def job_path(self, job_id: str) -> str:
        return f"{self.prefix}/{job_id}"

    def job_id_from_path(self, job_path: str) -> str:
        head, _, job_id = job_path.strip("/").rpartition("/")
        if head != self.prefix or not job_id:
            raise ValueError(f"Not a job path under {self.prefix}: {job_path}")
        return job_id

    def create(self, record: Mapping[str, Any], job_id: Optional[str] = None) -> str:
        """Push a new record; returns its id. Existing ids are never overwritten."""

        job_id = job_id or uuid4().hex
        if not self._create(job_id, dict(record)):
            raise ValueError(f"Job already exists: {job_id}")
        return job_id

    def update(self, job_id: str, updates: Mapping[str, Any]) -> Optional[Record]:
        return self.update_if(job_id, None, updates)

    @abstractmethod
    def _create(self, job_id: str, record: Record) -> bool:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    def update_if(
        self, job_id: str, predicate: Optional[Predicate], updates: Mapping[str, Any]
    ) -> Optional[Record]:
        """Atomically apply ``updates`` when ``predicate`` holds on the current record.

        Returns the updated record, or ``None`` when the record is missing or the
        predicate rejected it.
        """

    @abstractmethod
    def subscribe(self, job_id: Optional[str] = None, timeout: Optional[float] = None) -> Iterator[Record]:
        """Yield ``{"jobId", "record"}`` change events (optionally for one job)."""


class MemoryJobStore(JobStore):
    """Process-local store for development and tests."""

    def __init__(self, prefix: str = "mediagen-jobs") -> None:
        super().__init__(prefix)
        self._records: Dict[str, Record] = {}
        self._lock = threading.Lock()
        self._subscribers: List[queue.Queue] = []

    def _notify(self, job_id: str, record: Record) -> None:
        event = {"jobId": job_id, "record": copy.deepcopy(record)}
        for sub in list(self._subscribers):
            sub.put(event)

    def _create(self, job_id: str, record: Record) -> bool:
        with self._lock:
            if job_id in self._records:
                return False
            self._records[job_id] = copy.deepcopy(record)
            self._notify(job_id, record)
        return True

    def get(self, job_id: str) -> Optional[Record]:
        with self._lock:
            record = self._records.get(job_id)
            return copy.deepcopy(record) if record is not None else None

    def update_if(
        self, job_id: str, predicate: Optional[Predicate], updates: Mapping[str, Any]
    ) -> Optional[Record]:
        with self._lock:
            current = self._records.get(job_id)
            if current is None:
                return None
            if predicate is not None and not predicate(copy.deepcopy(current)):
                return None
            updated = apply_updates(current, updates)
            self._records[job_id] = updated
            self._notify(job_id, updated)
            return copy.deepcopy(updated)

    def subscribe(self, job_id: Optional[str] = None, timeout: Optional[float] = None) -> Iterator[Record]:
        # register before returning so changes made before iteration are not lost
        inbox: queue.Queue = queue.Queue()
        self._subscribers.append(inbox)
        return self._drain(inbox, job_id, timeout)

    def _drain(self, inbox: queue.Queue, job_id: Optional[str], timeout: Optional[float]) -> Iterator[Record]:
        try:
            while True:
                try:
                    event = inbox.get(timeout=timeout)
                except queue.Empty:
                    return
                if job_id is None or event["jobId"] == job_id:
                    yield event
        finally:
            self._subscribers.remove(inbox)


class RedisJobStore(JobStore):
    """Records as JSON strings; conditional writes via WATCH/MULTI."""

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "mediagen-jobs",
        *,
        channel: str = "mediagen-jobs:events",
        max_retries: int = 10,
    ) -> None:
        super().__init__(prefix)
        self._client = client
        self._channel = channel
        self._max_retries = max_retries

    def _event(self, job_id: str, record: Record) -> str:
        return json.dumps({"jobId": job_id, "record": record})

    def _create(self, job_id: str, record: Record) -> bool:
        key = self.job_path(job_id)
        created = self._client.set(key, json.dumps(record), nx=True)
        if created:
            self._client.publish(self._channel, self._event(job_id, record))
        return bool(created)

    def get(self, job_id: str) -> Optional[Record]:
        raw = self._client.get(self.job_path(job_id))
        if raw is None:
            return None
        return json.loads(raw)

    def update_if(
        self, job_id: str, predicate: Optional[Predicate], updates: Mapping[str, Any]
    ) -> Optional[Record]:
        key = self.job_path(job_id)
        with self._client.pipeline() as pipe:
            for _ in range(self._max_retries):
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        pipe.unwatch()
                        return None
                    current = json.loads(raw)
                    if predicate is not None and not predicate(current):
                        pipe.unwatch()
                        return None
                    updated = apply_updates(current, updates)
                    pipe.multi()
                    pipe.set(key, json.dumps(updated))
                    pipe.publish(self._channel, self._event(job_id, updated))
                    pipe.execute()
                    return updated
                except WatchError:
                    logger.debug("Concurrent write on %s, retrying", key)
                    continue
        raise StoreConflictError(f"Gave up updating {key} after {self._max_retries} conflicts")

    def subscribe(self, job_id: Optional[str] = None, timeout: Optional[float] = None) -> Iterator[Record]:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(self._channel)
        try:
            while True:
                message = pubsub.get_message(timeout=timeout or 1.0)
                if message is None:
                    if timeout is not None:
                        return
                    continue
                event = json.loads(message["data"])
                if job_id is None or event.get("jobId") == job_id:
                    yield event
        finally:
            pubsub.close()


def build_job_store(settings: Settings) -> JobStore:
    if settings.store.backend == "memory":
        return MemoryJobStore(settings.jobs_prefix)
    client = redis.Redis.from_url(settings.store.url, decode_responses=True)
    return RedisJobStore(
        client,
        settings.jobs_prefix,
        channel=settings.store.channel,
        max_retries=settings.store.max_cas_retries,
    )


__all__ = [
    "JobStore",
    "MemoryJobStore",
    "RedisJobStore",
    "StoreConflictError",
    "apply_updates",
    "build_job_store",
    "status_in",
]
