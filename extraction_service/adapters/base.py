"""Extractor adapter contract.

Adapters own everything site specific about getting rows out of a booking
site (browser automation, login, pagination). The orchestrator only sees raw
dict rows and the exceptions they raise.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, AsyncIterable, Dict, Iterable, List, Union

from hotel_rates.payloads import expand_rows
from hotel_rates.schema import Site

if TYPE_CHECKING:
    from ..jobs.models import SearchParams

RawRows = Union[AsyncIterable[Dict[str, Any]], Iterable[Dict[str, Any]]]


class ExtractorAdapter(ABC):
    """Site-specific extraction capability.

    Either method may be a coroutine returning rows, an async generator, or a
    plain function returning a list. Rows may be gzip NDJSON envelopes.
    """

    site: Site

    @abstractmethod
    def search(self, params: SearchParams) -> Any:
        ...

    @abstractmethod
    def room_rates(self, hotel_id: str, params: SearchParams) -> Any:
        ...


async def collect_rows(result: Any, into: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drain an adapter result into ``into``, expanding envelopes.

    Rows are appended as they arrive so a caller keeps what was read before a
    failure.
    """

    if inspect.isawaitable(result):
        result = await result
    if result is None:
        return into
    if hasattr(result, "__aiter__"):
        async for row in result:
            into.extend(expand_rows([row]))
    else:
        into.extend(expand_rows(result))
    return into


__all__ = ["ExtractorAdapter", "RawRows", "collect_rows"]
