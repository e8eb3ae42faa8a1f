"""FastAPI routes for the extraction service."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator

from hotel_rates.schema import Site

from ..errors import DuplicateActiveSession, SessionNotFound, SessionNotResumable
from ..jobs.manager import SessionManager, get_session_manager
from ..jobs.models import ExtractionOptions, ExtractionSession, SearchParams
from ..security.api_keys import Role, require_roles
from ..service import ExtractionResponse, ExtractionService, get_extraction_service

router = APIRouter()


class SearchRequest(BaseModel):
    trip_id: str = Field(..., min_length=1)
    site: Site
    destination: str = Field(..., min_length=1)
    check_in: date
    check_out: date
    adults: int = Field(2, ge=1)
    children: int = Field(0, ge=0)
    rooms: int = Field(1, ge=1)
    wait: bool = Field(False, description="Block until the session reaches a terminal status")

    @model_validator(mode="after")
    def _dates_in_order(self) -> "SearchRequest":
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self

    def search_params(self) -> SearchParams:
        return SearchParams(
            destination=self.destination,
            check_in=self.check_in,
            check_out=self.check_out,
            adults=self.adults,
            children=self.children,
            rooms=self.rooms,
        )


class HotelExtractionRequest(SearchRequest):
    fetch_rooms: bool = False
    max_hotels: Optional[int] = Field(None, ge=0, description="Hotels by rank that get room rates")
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    min_stars: Optional[float] = Field(None, ge=0, le=5)


class RoomExtractionRequest(SearchRequest):
    hotel_ids: List[str] = Field(..., min_length=1, description="Site-local hotel ids")


class ExtractionResponseModel(BaseModel):
    session_id: str
    status: str
    counters: Dict[str, int]

    @classmethod
    def from_response(cls, response: ExtractionResponse) -> "ExtractionResponseModel":
        return cls(session_id=response.session_id, status=response.status, counters=response.counters)


class TaskView(BaseModel):
    task_id: str
    kind: str
    target: Optional[str]
    rank: int
    status: str
    attempts: int
    last_error_class: Optional[str]
    last_error: Optional[str]


class SessionDetail(BaseModel):
    session_id: str
    trip_id: str
    site: str
    kind: str
    status: str
    counters: Dict[str, int]
    tasks: List[TaskView]
    errors: List[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(cls, session: ExtractionSession) -> "SessionDetail":
        return cls(
            session_id=session.session_id,
            trip_id=session.trip_id,
            site=session.site.value,
            kind=session.kind.value,
            status=session.status.value,
            counters=session.counters.to_dict(),
            tasks=[
                TaskView(**{k: v for k, v in task.to_dict().items() if k in TaskView.model_fields})
                for task in session.tasks
            ],
            errors=[{k: v for k, v in error.to_dict().items() if k != "raw"} for error in session.errors],
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class ProgressResponse(BaseModel):
    session_id: str
    status: str
    hotels_found: int
    rooms_extracted: int
    attempts_made: int
    errors_encountered: int
    tasks: Dict[str, int]


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, SessionNotFound):
        return HTTPException(status_code=404, detail="Session not found")
    if isinstance(exc, DuplicateActiveSession):
        return HTTPException(
            status_code=409, detail={"message": "Session already active", "session_id": exc.session_id}
        )
    if isinstance(exc, SessionNotResumable):
        return HTTPException(status_code=409, detail=f"Session is {exc.status} and cannot be resumed")
    return HTTPException(status_code=400, detail=str(exc))


_operators = require_roles(Role.ADMIN, Role.OPERATOR)


@router.post("/extractions/hotels", response_model=ExtractionResponseModel, status_code=202)
async def extract_hotels(
    payload: HotelExtractionRequest,
    service: ExtractionService = Depends(get_extraction_service),
    _: Role = Depends(_operators),
) -> ExtractionResponseModel:
    options = ExtractionOptions(
        fetch_rooms=payload.fetch_rooms,
        max_hotels=payload.max_hotels,
        min_price=payload.min_price,
        max_price=payload.max_price,
        min_stars=payload.min_stars,
    )
    try:
        response = await service.extract_hotels(
            payload.trip_id, payload.site, payload.search_params(), options, wait=payload.wait
        )
    except (DuplicateActiveSession, LookupError) as exc:
        raise _http_error(exc) from exc
    return ExtractionResponseModel.from_response(response)


@router.post("/extractions/rooms", response_model=ExtractionResponseModel, status_code=202)
async def extract_rooms(
    payload: RoomExtractionRequest,
    service: ExtractionService = Depends(get_extraction_service),
    _: Role = Depends(_operators),
) -> ExtractionResponseModel:
    try:
        response = await service.extract_room_rates(
            payload.trip_id, payload.site, payload.search_params(), payload.hotel_ids, wait=payload.wait
        )
    except (DuplicateActiveSession, LookupError) as exc:
        raise _http_error(exc) from exc
    return ExtractionResponseModel.from_response(response)


@router.get("/sessions/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
    _: Role = Depends(_operators),
) -> SessionDetail:
    try:
        session = await manager.get(session_id)
    except SessionNotFound as exc:
        raise _http_error(exc) from exc
    return SessionDetail.from_session(session)


@router.get("/sessions/{session_id}/progress", response_model=ProgressResponse)
async def get_progress(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
    _: Role = Depends(_operators),
) -> ProgressResponse:
    try:
        return ProgressResponse(**await manager.progress(session_id))
    except SessionNotFound as exc:
        raise _http_error(exc) from exc


@router.post("/sessions/{session_id}/resume", response_model=ExtractionResponseModel, status_code=202)
async def resume_session(
    session_id: str,
    wait: bool = False,
    service: ExtractionService = Depends(get_extraction_service),
    _: Role = Depends(_operators),
) -> ExtractionResponseModel:
    try:
        response = await service.resume(session_id, wait=wait)
    except (SessionNotFound, SessionNotResumable, DuplicateActiveSession) as exc:
        raise _http_error(exc) from exc
    return ExtractionResponseModel.from_response(response)


@router.post("/sessions/{session_id}/cancel", response_model=ExtractionResponseModel)
async def cancel_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
    _: Role = Depends(require_roles(Role.ADMIN)),
) -> ExtractionResponseModel:
    try:
        session = await manager.cancel(session_id)
    except SessionNotFound as exc:
        raise _http_error(exc) from exc
    return ExtractionResponseModel.from_response(ExtractionResponse.from_session(session))


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: datetime
    sites: List[str] = Field(default_factory=list)


@router.get("/health", response_model=HealthResponse, include_in_schema=False)
async def health_check(manager: SessionManager = Depends(get_session_manager)) -> HealthResponse:
    return HealthResponse(timestamp=datetime.utcnow(), sites=[site.value for site in manager.adapters.sites()])
