"""API routes for rental occupancy."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel

from rental_occupancy.core.fetcher import ICalFetcher
from rental_occupancy.core.ical_parser import CalendarEvent
from rental_occupancy.core.manager import OccupancyManager
from rental_occupancy.errors import (
    EmptyFeed,
    FetchError,
    IngestionError,
    InvalidFeedStructure,
    InvalidFeedUrl,
    ListingNotFound,
    StorageWriteFailure,
)

router = APIRouter()
proxy_router = APIRouter()

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Max-Age": "86400",
}


def get_manager(request: Request) -> OccupancyManager:
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(status_code=500, detail="Manager not initialized")
    return manager


def get_fetcher(request: Request) -> ICalFetcher:
    fetcher = getattr(request.app.state, "fetcher", None)
    if fetcher is None:
        raise HTTPException(status_code=500, detail="Fetcher not initialized")
    return fetcher


def _http_error(e: Exception) -> HTTPException:
    """Translate a pipeline error into an HTTP error."""
    if isinstance(e, ListingNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidFeedUrl):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, FetchError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, (InvalidFeedStructure, EmptyFeed)):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, StorageWriteFailure):
        return HTTPException(status_code=500, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


# Request/Response models


class FetchICalRequest(BaseModel):
    icalUrl: Optional[str] = None


class ListingRequest(BaseModel):
    owner_id: str
    title: str


class ImportRequest(BaseModel):
    ical_url: str
    source: Optional[str] = None


# iCal proxy endpoints


@proxy_router.get("/health")
async def health_check(manager: OccupancyManager = Depends(get_manager)):
    """Check the health of the service."""
    return await manager.health_check()


@proxy_router.options("/fetch-ical")
async def fetch_ical_preflight():
    """Answer CORS preflight requests."""
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)


@proxy_router.post("/fetch-ical")
async def fetch_ical(
    request: FetchICalRequest,
    response: Response,
    fetcher: ICalFetcher = Depends(get_fetcher),
):
    """Fetch an iCal feed and return its events as start/end pairs."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    if not request.icalUrl:
        raise HTTPException(status_code=400, detail="icalUrl is required")

    try:
        events: list[CalendarEvent] = await fetcher.fetch_events(request.icalUrl)
    except IngestionError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {"data": [event.to_dict() for event in events]}


# Listing endpoints


@router.post("/listings", status_code=201)
async def create_listing(
    request: ListingRequest,
    manager: OccupancyManager = Depends(get_manager),
):
    """Create a listing."""
    try:
        return await manager.create_listing(request.owner_id, request.title)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/listings")
async def get_listings(
    owner_id: str = Query(...),
    manager: OccupancyManager = Depends(get_manager),
):
    """Get an owner's listings, newest first."""
    return await manager.get_listings(owner_id)


@router.get("/listings/{listing_id}")
async def get_listing(
    listing_id: int,
    manager: OccupancyManager = Depends(get_manager),
):
    try:
        return await manager.get_listing(listing_id)
    except ListingNotFound as e:
        raise _http_error(e)


@router.get("/listings/{listing_id}/reservations")
async def get_reservations(
    listing_id: int,
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    manager: OccupancyManager = Depends(get_manager),
):
    """Get a listing's reservations ordered by start date."""
    try:
        return await manager.get_reservations(listing_id, from_date, to_date)
    except ListingNotFound as e:
        raise _http_error(e)


@router.post("/listings/{listing_id}/import")
async def import_feed(
    listing_id: int,
    request: ImportRequest,
    manager: OccupancyManager = Depends(get_manager),
):
    """Import reservations from an iCal feed into a listing."""
    try:
        result = await manager.import_feed(listing_id, request.ical_url, request.source)
    except (ListingNotFound, IngestionError) as e:
        raise _http_error(e)
    return result.to_dict()


@router.get("/listings/{listing_id}/occupancy")
async def get_occupancy(
    listing_id: int,
    year: Optional[int] = Query(None, ge=1, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    manager: OccupancyManager = Depends(get_manager),
):
    """Occupancy rate and suggested price for a month (current month by default)."""
    try:
        return await manager.get_occupancy(listing_id, year=year, month=month)
    except (ListingNotFound, ValueError) as e:
        raise _http_error(e)
