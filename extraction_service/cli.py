"""CLI entrypoint for the extraction service."""

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from typing import List, Optional

import typer

from hotel_rates.logging_utils import configure_logging
from hotel_rates.schema import Site

from .adapters.registry import load_adapter_modules
from .config import get_settings
from .db.session import dispose_engine, init_db
from .errors import DuplicateActiveSession, SessionNotFound, SessionNotResumable
from .jobs.manager import get_session_manager
from .jobs.models import ExtractionOptions, SearchParams
from .service import ExtractionResponse, get_extraction_service

app = typer.Typer(help="Hotel rate extraction orchestrator command line interface")


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise typer.BadParameter(f"{value!r} is not a YYYY-MM-DD date") from exc


def _params(destination: str, check_in: str, check_out: str, adults: int, children: int, rooms: int) -> SearchParams:
    params = SearchParams(destination, _parse_date(check_in), _parse_date(check_out), adults, children, rooms)
    if params.nights is None:
        raise typer.BadParameter("check-out must be after check-in")
    return params


def _run(coro):
    """Run one command against the database configured in settings."""

    async def _main():
        settings = get_settings()
        configure_logging(settings.log_file, settings.log_level)
        load_adapter_modules(settings.adapter_modules)
        await init_db()
        try:
            return await coro
        finally:
            await get_session_manager().sink.aclose()
            await dispose_engine()

    try:
        return asyncio.run(_main())
    except SessionNotFound as exc:
        typer.echo(f"Session {exc.args[0]} not found", err=True)
        raise typer.Exit(code=1) from exc
    except (DuplicateActiveSession, SessionNotResumable, LookupError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _echo(response: ExtractionResponse) -> None:
    typer.echo(json.dumps({"session_id": response.session_id, "status": response.status, **response.counters}, indent=2))


@app.command()
def show_config() -> None:
    """Print the active configuration."""

    settings = get_settings()
    typer.echo(settings.model_dump_json(indent=2))


@app.command("init-db")
def init_database() -> None:
    """Create the session tables."""

    async def _init() -> None:
        await init_db()
        await dispose_engine()

    asyncio.run(_init())
    typer.echo("Database initialised")


@app.command()
def extract_hotels(
    trip_id: str,
    site: Site,
    destination: str,
    check_in: str = typer.Argument(..., help="YYYY-MM-DD"),
    check_out: str = typer.Argument(..., help="YYYY-MM-DD"),
    adults: int = typer.Option(2, min=1),
    children: int = typer.Option(0, min=0),
    rooms: int = typer.Option(1, min=1),
    fetch_rooms: bool = typer.Option(False, help="Also extract room rates for the top hotels"),
    max_hotels: Optional[int] = typer.Option(None, help="Hotels by rank that get room rates"),
    min_price: Optional[float] = typer.Option(None),
    max_price: Optional[float] = typer.Option(None),
    min_stars: Optional[float] = typer.Option(None),
) -> None:
    """Run a hotel search session to completion."""

    params = _params(destination, check_in, check_out, adults, children, rooms)
    options = ExtractionOptions(
        fetch_rooms=fetch_rooms, max_hotels=max_hotels, min_price=min_price, max_price=max_price, min_stars=min_stars
    )
    _echo(_run(get_extraction_service().extract_hotels(trip_id, site, params, options, wait=True)))


@app.command()
def extract_rooms(
    trip_id: str,
    site: Site,
    destination: str,
    check_in: str = typer.Argument(..., help="YYYY-MM-DD"),
    check_out: str = typer.Argument(..., help="YYYY-MM-DD"),
    hotel_id: List[str] = typer.Option(..., "--hotel-id", help="Site-local hotel id; repeatable"),
    adults: int = typer.Option(2, min=1),
    children: int = typer.Option(0, min=0),
    rooms: int = typer.Option(1, min=1),
) -> None:
    """Run a room-rate session for the given hotels."""

    params = _params(destination, check_in, check_out, adults, children, rooms)
    _echo(_run(get_extraction_service().extract_room_rates(trip_id, site, params, hotel_id, wait=True)))


@app.command()
def progress(session_id: str) -> None:
    """Show counters for a session."""

    snapshot = _run(get_session_manager().progress(session_id))
    typer.echo(json.dumps(snapshot, indent=2))


@app.command()
def resume(session_id: str) -> None:
    """Re-run the failed and exhausted tasks of a session."""

    _echo(_run(get_extraction_service().resume(session_id, wait=True)))


@app.command()
def cancel(session_id: str) -> None:
    """Request cancellation of a session running in this process."""

    session = _run(get_session_manager().cancel(session_id))
    if not session.cancel_requested:
        typer.echo(f"Session {session_id} is {session.status.value}; nothing to cancel here")
        return
    typer.echo(f"Cancellation requested for {session_id}")


if __name__ == "__main__":
    app()
