"""Domain models for extraction sessions and tasks."""

from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from hotel_rates.schema import HotelOption, Site

from ..errors import ErrorClass, InvalidTransition


class SessionStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.PARTIAL, SessionStatus.FAILED})
RESUMABLE_STATUSES = frozenset({SessionStatus.PARTIAL, SessionStatus.FAILED})

_TRANSITIONS = {
    SessionStatus.CREATED: {SessionStatus.RUNNING},
    SessionStatus.RUNNING: {SessionStatus.COMPLETED, SessionStatus.PARTIAL, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.PARTIAL: set(),
    SessionStatus.FAILED: set(),
}


class TaskKind(str, Enum):
    SEARCH = "search"
    ROOM_RATES = "room_rates"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass
class SearchParams:
    destination: str
    check_in: date
    check_out: date
    adults: int = 2
    children: int = 0
    rooms: int = 1

    @property
    def nights(self) -> Optional[int]:
        nights = (self.check_out - self.check_in).days
        return nights if nights > 0 else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "destination": self.destination,
            "check_in": self.check_in.isoformat(),
            "check_out": self.check_out.isoformat(),
            "adults": self.adults,
            "children": self.children,
            "rooms": self.rooms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchParams":
        return cls(
            destination=data["destination"],
            check_in=date.fromisoformat(str(data["check_in"])),
            check_out=date.fromisoformat(str(data["check_out"])),
            adults=int(data.get("adults", 2)),
            children=int(data.get("children", 0)),
            rooms=int(data.get("rooms", 1)),
        )


@dataclass
class ExtractionOptions:
    """Per-request knobs for a session."""

    fetch_rooms: bool = False
    max_hotels: Optional[int] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_stars: Optional[float] = None
    hotel_ids: List[str] = field(default_factory=list)

    def accepts(self, hotel: HotelOption) -> bool:
        amount = hotel.lead_price.amount
        if self.min_price is not None and amount < self.min_price:
            return False
        if self.max_price is not None and amount > self.max_price:
            return False
        if self.min_stars is not None and (hotel.star_rating or 0) < self.min_stars:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetch_rooms": self.fetch_rooms,
            "max_hotels": self.max_hotels,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "min_stars": self.min_stars,
            "hotel_ids": list(self.hotel_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionOptions":
        return cls(
            fetch_rooms=bool(data.get("fetch_rooms", False)),
            max_hotels=data.get("max_hotels"),
            min_price=data.get("min_price"),
            max_price=data.get("max_price"),
            min_stars=data.get("min_stars"),
            hotel_ids=list(data.get("hotel_ids") or []),
        )


@dataclass
class SessionCounters:
    hotels_found: int = 0
    rooms_extracted: int = 0
    attempts_made: int = 0
    errors_encountered: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "hotels_found": self.hotels_found,
            "rooms_extracted": self.rooms_extracted,
            "attempts_made": self.attempts_made,
            "errors_encountered": self.errors_encountered,
        }


@dataclass
class ExtractionTask:
    task_id: str
    session_id: str
    kind: TaskKind
    target: Optional[str] = None
    rank: int = 0
    attempts: int = 0
    status: TaskStatus = TaskStatus.PENDING
    last_error_class: Optional[ErrorClass] = None
    last_error: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def create(cls, session_id: str, kind: TaskKind, target: Optional[str] = None, rank: int = 0) -> "ExtractionTask":
        return cls(task_id=str(uuid.uuid4()), session_id=session_id, kind=kind, target=target, rank=rank)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "session_id": self.session_id,
            "kind": self.kind.value,
            "target": self.target,
            "rank": self.rank,
            "attempts": self.attempts,
            "status": self.status.value,
            "last_error_class": self.last_error_class.value if self.last_error_class else None,
            "last_error": self.last_error,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionTask":
        return cls(
            task_id=data["task_id"],
            session_id=data["session_id"],
            kind=TaskKind(data["kind"]),
            target=data.get("target"),
            rank=int(data.get("rank", 0)),
            attempts=int(data.get("attempts", 0)),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            last_error_class=ErrorClass(data["last_error_class"]) if data.get("last_error_class") else None,
            last_error=data.get("last_error"),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else _utcnow(),
        )


@dataclass
class TaskOutcome:
    task_id: str
    status: TaskStatus
    attempts: int
    records: int = 0
    error_class: Optional[ErrorClass] = None
    error: Optional[str] = None
    finished_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "records": self.records,
            "error_class": self.error_class.value if self.error_class else None,
            "error": self.error,
            "finished_at": self.finished_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskOutcome":
        return cls(
            task_id=data["task_id"],
            status=TaskStatus(data["status"]),
            attempts=int(data.get("attempts", 0)),
            records=int(data.get("records", 0)),
            error_class=ErrorClass(data["error_class"]) if data.get("error_class") else None,
            error=data.get("error"),
            finished_at=datetime.fromisoformat(data["finished_at"]),
        )


@dataclass
class RecordError:
    """A record dropped from the output set, kept for diagnosis."""

    reason: str
    message: str
    task_id: Optional[str] = None
    key: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "message": self.message, "task_id": self.task_id, "key": self.key, "raw": self.raw}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecordError":
        return cls(
            reason=data["reason"],
            message=data["message"],
            task_id=data.get("task_id"),
            key=data.get("key"),
            raw=data.get("raw"),
        )


def session_fingerprint(
    trip_id: str, site: Site, params: SearchParams, kind: TaskKind, hotel_ids: Optional[List[str]] = None
) -> str:
    payload = {
        "trip_id": trip_id,
        "site": Site(site).value,
        "params": params.to_dict(),
        "kind": kind.value,
        "hotel_ids": sorted(hotel_ids or []),
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


@dataclass
class ExtractionSession:
    session_id: str
    trip_id: str
    site: Site
    params: SearchParams
    options: ExtractionOptions = field(default_factory=ExtractionOptions)
    kind: TaskKind = TaskKind.SEARCH
    status: SessionStatus = SessionStatus.CREATED
    counters: SessionCounters = field(default_factory=SessionCounters)
    tasks: List[ExtractionTask] = field(default_factory=list)
    outcomes: List[TaskOutcome] = field(default_factory=list)
    errors: List[RecordError] = field(default_factory=list)
    hotel_ids: List[str] = field(default_factory=list)
    room_keys: Set[str] = field(default_factory=set)
    ingested_keys: Set[str] = field(default_factory=set)
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        trip_id: str,
        site: Site,
        params: SearchParams,
        options: Optional[ExtractionOptions] = None,
        kind: TaskKind = TaskKind.SEARCH,
    ) -> "ExtractionSession":
        session = cls(
            session_id=str(uuid.uuid4()),
            trip_id=trip_id,
            site=Site(site),
            params=params,
            options=options or ExtractionOptions(),
            kind=kind,
        )
        if kind is TaskKind.SEARCH:
            session.tasks.append(ExtractionTask.create(session.session_id, TaskKind.SEARCH))
        else:
            for rank, hotel_id in enumerate(session.options.hotel_ids):
                session.tasks.append(ExtractionTask.create(session.session_id, TaskKind.ROOM_RATES, hotel_id, rank))
        return session

    @property
    def fingerprint(self) -> str:
        return session_fingerprint(self.trip_id, self.site, self.params, self.kind, self.options.hotel_ids)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, new_status: SessionStatus, *, resume: bool = False) -> None:
        allowed = _TRANSITIONS[self.status]
        if resume and self.status in RESUMABLE_STATUSES and new_status is SessionStatus.RUNNING:
            allowed = {SessionStatus.RUNNING}
        if new_status not in allowed:
            raise InvalidTransition(f"{self.status.value} -> {new_status.value} is not allowed")
        self.status = new_status
        self.touch()

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def task(self, task_id: str) -> ExtractionTask:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        raise KeyError(task_id)

    def tasks_with(self, *statuses: TaskStatus) -> List[ExtractionTask]:
        return [task for task in self.tasks if task.status in statuses]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "trip_id": self.trip_id,
            "site": self.site.value,
            "params": self.params.to_dict(),
            "options": self.options.to_dict(),
            "kind": self.kind.value,
            "status": self.status.value,
            "counters": self.counters.to_dict(),
            "tasks": [task.to_dict() for task in self.tasks],
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "errors": [error.to_dict() for error in self.errors],
            "hotel_ids": list(self.hotel_ids),
            "room_keys": sorted(self.room_keys),
            "ingested_keys": sorted(self.ingested_keys),
            "cancel_requested": self.cancel_requested,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionSession":
        return cls(
            session_id=data["session_id"],
            trip_id=data["trip_id"],
            site=Site(data["site"]),
            params=SearchParams.from_dict(data["params"]),
            options=ExtractionOptions.from_dict(data.get("options") or {}),
            kind=TaskKind(data.get("kind", TaskKind.SEARCH.value)),
            status=SessionStatus(data["status"]),
            counters=SessionCounters(**(data.get("counters") or {})),
            tasks=[ExtractionTask.from_dict(item) for item in data.get("tasks", [])],
            outcomes=[TaskOutcome.from_dict(item) for item in data.get("outcomes", [])],
            errors=[RecordError.from_dict(item) for item in data.get("errors", [])],
            hotel_ids=list(data.get("hotel_ids", [])),
            room_keys=set(data.get("room_keys", [])),
            ingested_keys=set(data.get("ingested_keys", [])),
            cancel_requested=bool(data.get("cancel_requested", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


__all__ = [
    "SessionStatus",
    "TERMINAL_STATUSES",
    "RESUMABLE_STATUSES",
    "TaskKind",
    "TaskStatus",
    "SearchParams",
    "ExtractionOptions",
    "SessionCounters",
    "ExtractionTask",
    "TaskOutcome",
    "RecordError",
    "ExtractionSession",
    "session_fingerprint",
]
