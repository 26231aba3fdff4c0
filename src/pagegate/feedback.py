"""Classification feedback: stores, statistics and training bookkeeping.

Feedback records are append-only. The only mutation is flipping the training
flag from false to true; removal happens solely through the retention sweep
(``purge_before``).
"""

from __future__ import annotations

import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

import orjson
from pydantic import BaseModel, Field

from .errors import FeedbackNotFound
from .interfaces import FeedbackStore
from .logging import get_logger
from .models import ClassificationFeedback

logger = get_logger("pagegate.feedback")


def _flag(record: ClassificationFeedback, job_id: Optional[str]) -> ClassificationFeedback:
    return record.mark_used_for_training(job_id)


class InMemoryFeedbackStore(FeedbackStore):
    def __init__(self) -> None:
        self._records: Dict[str, ClassificationFeedback] = {}
        self._lock = threading.Lock()

    def append(self, record: ClassificationFeedback) -> str:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Feedback {record.id} already exists")
            self._records[record.id] = record
        return record.id

    def get(self, record_id: str) -> ClassificationFeedback:
        with self._lock:
            try:
                return self._records[record_id]
            except KeyError as exc:
                raise FeedbackNotFound(record_id) from exc

    def list(self) -> List[ClassificationFeedback]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.timestamp)

    def update_training_flag(
        self, record_id: str, job_id: Optional[str] = None
    ) -> ClassificationFeedback:
        with self._lock:
            try:
                current = self._records[record_id]
            except KeyError as exc:
                raise FeedbackNotFound(record_id) from exc
            updated = _flag(current, job_id)
            self._records[record_id] = updated
            return updated

    def purge_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [k for k, r in self._records.items() if r.timestamp < cutoff]
            for k in stale:
                del self._records[k]
        return len(stale)


class JsonlFeedbackStore(FeedbackStore):
    """One JSON object per line. Rewrites go through a temp file + rename."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _load(self) -> List[ClassificationFeedback]:
        if not self.path.exists():
            return []
        records = []
        with open(self.path, "rb") as f:
            for line in f:
                line = line.strip()
                if line:
                    records.append(ClassificationFeedback.model_validate(orjson.loads(line)))
        return records

    def _rewrite(self, records: List[ClassificationFeedback]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "wb") as f:
            for r in records:
                f.write(orjson.dumps(r.model_dump(mode="json")) + b"\n")
        os.replace(tmp, self.path)

    def append(self, record: ClassificationFeedback) -> str:
        with self._lock:
            with open(self.path, "ab") as f:
                f.write(orjson.dumps(record.model_dump(mode="json")) + b"\n")
        return record.id

    def get(self, record_id: str) -> ClassificationFeedback:
        for r in self.list():
            if r.id == record_id:
                return r
        raise FeedbackNotFound(record_id)

    def list(self) -> List[ClassificationFeedback]:
        with self._lock:
            return sorted(self._load(), key=lambda r: r.timestamp)

    def update_training_flag(
        self, record_id: str, job_id: Optional[str] = None
    ) -> ClassificationFeedback:
        with self._lock:
            records = self._load()
            for i, r in enumerate(records):
                if r.id == record_id:
                    updated = _flag(r, job_id)
                    if updated is not r:
                        records[i] = updated
                        self._rewrite(records)
                    return updated
        raise FeedbackNotFound(record_id)

    def purge_before(self, cutoff: datetime) -> int:
        with self._lock:
            records = self._load()
            kept = [r for r in records if r.timestamp >= cutoff]
            removed = len(records) - len(kept)
            if removed:
                self._rewrite(kept)
        return removed


class FallbackFeedbackStore(FeedbackStore):
    """Append to ``primary`` and degrade to ``secondary`` when it fails."""

    def __init__(self, primary: FeedbackStore, secondary: FeedbackStore) -> None:
        self.primary = primary
        self.secondary = secondary

    def append(self, record: ClassificationFeedback) -> str:
        try:
            return self.primary.append(record)
        except Exception:
            logger.warning("Primary feedback store failed; using fallback", exc_info=True)
            return self.secondary.append(record)

    def get(self, record_id: str) -> ClassificationFeedback:
        try:
            return self.primary.get(record_id)
        except FeedbackNotFound:
            return self.secondary.get(record_id)

    def list(self) -> List[ClassificationFeedback]:
        seen = {}
        for store in (self.secondary, self.primary):
            for r in store.list():
                seen[r.id] = r
        return sorted(seen.values(), key=lambda r: r.timestamp)

    def update_training_flag(
        self, record_id: str, job_id: Optional[str] = None
    ) -> ClassificationFeedback:
        try:
            return self.primary.update_training_flag(record_id, job_id)
        except FeedbackNotFound:
            return self.secondary.update_training_flag(record_id, job_id)

    def purge_before(self, cutoff: datetime) -> int:
        return self.primary.purge_before(cutoff) + self.secondary.purge_before(cutoff)


class TypeStats(BaseModel):
    total: int = 0
    trained: int = 0
    untrained: int = 0


class FeedbackStats(BaseModel):
    total: int = 0
    trained: int = 0
    untrained: int = 0
    by_document_type: Dict[str, TypeStats] = Field(default_factory=dict)


def feedback_stats(records: List[ClassificationFeedback]) -> FeedbackStats:
    """Count records overall and per effective document type."""
    stats = FeedbackStats()
    for r in records:
        bucket = stats.by_document_type.setdefault(r.effective_document_type, TypeStats())
        stats.total += 1
        bucket.total += 1
        if r.has_been_used_for_training:
            stats.trained += 1
            bucket.trained += 1
        else:
            stats.untrained += 1
            bucket.untrained += 1
    return stats


class TrainingClaim(BaseModel):
    job_id: str
    record_ids: List[str] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.record_ids)


def claim_for_training(
    store: FeedbackStore,
    document_type: str = "all",
    sub_type: Optional[str] = None,
    limit: Optional[int] = None,
    job_id: Optional[str] = None,
) -> TrainingClaim:
    """Mark untrained records as used by a training job.

    ``document_type="all"`` matches every type. Records are claimed oldest
    first. Nothing is trained here; this only does the bookkeeping.
    """
    job_id = job_id or f"job-{uuid4().hex[:12]}"
    want_type = (document_type or "all").strip().lower()
    want_sub = sub_type.strip().lower() if sub_type else None
    claim = TrainingClaim(job_id=job_id)
    for r in store.list():
        if limit is not None and claim.count >= limit:
            break
        if r.has_been_used_for_training:
            continue
        if want_type != "all" and r.effective_document_type.lower() != want_type:
            continue
        if want_sub and (r.document_sub_type or "").lower() != want_sub:
            continue
        store.update_training_flag(r.id, job_id)
        claim.record_ids.append(r.id)
    logger.info(
        "Claimed feedback for training",
        extra={"extra": {"job_id": job_id, "records": claim.count, "document_type": want_type}},
    )
    return claim


__all__ = [
    "InMemoryFeedbackStore",
    "JsonlFeedbackStore",
    "FallbackFeedbackStore",
    "FeedbackStats",
    "TypeStats",
    "TrainingClaim",
    "feedback_stats",
    "claim_for_training",
]
