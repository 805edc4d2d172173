"""In-memory evaluation store standing in for the hosted database."""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, Generic, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from eduadmin.models import (
    GraduationEvaluation,
    Record,
    SchoolClass,
    Student,
    Subject,
    Teacher,
    TeacherEvaluation,
    User,
)

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=Record)


class RecordNotFound(KeyError):
    """Raised when an id does not exist in a collection."""

    def __init__(self, collection: str, record_id: str):
        super().__init__(record_id)
        self.collection = collection
        self.record_id = record_id

    def __str__(self) -> str:
        return f"{self.collection} record '{self.record_id}' not found"


class Collection(Generic[T]):
    """
    Ordered collection of records keyed by generated id.

    ``all()`` yields records in insertion order; updates keep a record's
    position and its ``created_at`` stamp.
    """

    def __init__(self, name: str, model: Type[T]):
        self.name = name
        self.model = model
        self._records: Dict[str, T] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def all(self) -> List[T]:
        with self._lock:
            return list(self._records.values())

    def newest_first(self) -> List[T]:
        return list(reversed(self.all()))

    def get(self, record_id: str) -> T:
        with self._lock:
            try:
                return self._records[record_id]
            except KeyError:
                raise RecordNotFound(self.name, record_id) from None

    def find(self, **criteria) -> List[T]:
        return [
            r for r in self.all()
            if all(getattr(r, k, None) == v for k, v in criteria.items())
        ]

    def insert(self, record: T) -> T:
        stored = record.model_copy(update={
            'id': uuid.uuid4().hex,
            'created_at': datetime.now(timezone.utc),
        })
        with self._lock:
            self._records[stored.id] = stored
        logger.debug("Inserted %s record %s", self.name, stored.id)
        return stored

    def update(self, record_id: str, record: T) -> T:
        with self._lock:
            existing = self._records.get(record_id)
            if existing is None:
                raise RecordNotFound(self.name, record_id)
            stored = record.model_copy(update={
                'id': record_id,
                'created_at': existing.created_at,
            })
            self._records[record_id] = stored
        logger.debug("Updated %s record %s", self.name, record_id)
        return stored

    def delete(self, record_id: str) -> T:
        with self._lock:
            try:
                removed = self._records.pop(record_id)
            except KeyError:
                raise RecordNotFound(self.name, record_id) from None
        logger.debug("Deleted %s record %s", self.name, record_id)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class EvaluationStore:
    """All collections the admin console works with."""

    def __init__(self):
        self.students: Collection[Student] = Collection('student', Student)
        self.teachers: Collection[Teacher] = Collection('teacher', Teacher)
        self.classes: Collection[SchoolClass] = Collection('class', SchoolClass)
        self.subjects: Collection[Subject] = Collection('subject', Subject)
        self.users: Collection[User] = Collection('user', User)
        self.teacher_evaluations: Collection[TeacherEvaluation] = Collection('teacher_evaluation', TeacherEvaluation)
        self.graduation_evaluations: Collection[GraduationEvaluation] = Collection('graduation_evaluation', GraduationEvaluation)

    def insert_many(self, collection: Collection[T], records: Iterable[T]) -> List[T]:
        return [collection.insert(r) for r in records]


def search(records: Sequence[T], q: Optional[str], fields: Sequence[str]) -> List[T]:
    """Case-insensitive substring match of ``q`` against any of ``fields``."""
    if not q or not q.strip():
        return list(records)
    needle = q.strip().lower()
    matches = []
    for record in records:
        for name in fields:
            value = getattr(record, name, None)
            value = getattr(value, 'value', value)
            if value is not None and needle in str(value).lower():
                matches.append(record)
                break
    return matches


def paginate(items: Sequence, page: int = 1, page_size: int = 20) -> Tuple[List, int]:
    """Return the requested 1-based page and the total item count."""
    page = max(page, 1)
    page_size = max(page_size, 1)
    start = (page - 1) * page_size
    return list(items[start:start + page_size]), len(items)
