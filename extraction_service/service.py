"""Request surface shared by the HTTP API and the CLI."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Union

from hotel_rates.schema import Site

from .jobs.manager import SessionManager, get_session_manager
from .jobs.models import ExtractionOptions, ExtractionSession, SearchParams, TaskKind

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResponse:
    session_id: str
    status: str
    counters: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_session(cls, session: ExtractionSession) -> "ExtractionResponse":
        return cls(session.session_id, session.status.value, session.counters.to_dict())


class ExtractionService:
    """Starts sessions and optionally waits for them.

    With ``wait=False`` the run is scheduled on the current event loop and the
    caller polls ``progress`` with the returned session id.
    """

    def __init__(self, manager: Optional[SessionManager] = None) -> None:
        self.manager = manager or get_session_manager()
        self._background: Set[asyncio.Task] = set()

    async def _start(self, session: ExtractionSession, wait: bool) -> ExtractionResponse:
        if wait:
            return ExtractionResponse.from_session(await self.manager.run(session))
        task = asyncio.create_task(self.manager.run(session), name=f"extraction-{session.session_id}")
        self._background.add(task)
        task.add_done_callback(self._finished)
        return ExtractionResponse.from_session(session)

    def _finished(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background extraction crashed", exc_info=task.exception())

    async def extract_hotels(
        self,
        trip_id: str,
        site: Union[Site, str],
        params: SearchParams,
        options: Optional[ExtractionOptions] = None,
        *,
        wait: bool = True,
    ) -> ExtractionResponse:
        session = await self.manager.create(trip_id, site, params, options, TaskKind.SEARCH)
        return await self._start(session, wait)

    async def extract_room_rates(
        self,
        trip_id: str,
        site: Union[Site, str],
        params: SearchParams,
        hotel_ids: List[str],
        *,
        wait: bool = True,
    ) -> ExtractionResponse:
        options = ExtractionOptions(fetch_rooms=True, hotel_ids=list(hotel_ids))
        session = await self.manager.create(trip_id, site, params, options, TaskKind.ROOM_RATES)
        return await self._start(session, wait)

    async def resume(self, session_id: str, *, wait: bool = True) -> ExtractionResponse:
        session = await self.manager.reopen(session_id)
        return await self._start(session, wait)

    async def drain(self) -> None:
        """Wait for background runs; used on shutdown."""

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


_global_service: Optional[ExtractionService] = None


def get_extraction_service() -> ExtractionService:
    global _global_service
    if _global_service is None:
        _global_service = ExtractionService()
    return _global_service


__all__ = ["ExtractionResponse", "ExtractionService", "get_extraction_service"]
