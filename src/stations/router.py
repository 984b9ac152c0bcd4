from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional
from src.database import get_db
from src.stations.schemas import StationDetail, StationSearchResult
from src.stations.service import StationInventoryService

router = APIRouter()

@router.get("/", response_model=StationSearchResult)
def get_stations(
    skip: int = Query(0, ge=0, description="Number of stations to skip"),
    limit: int = Query(50, ge=1, le=100, description="Number of stations to return"),
    city: Optional[str] = Query(None, description="Filter by city"),
    db: Session = Depends(get_db)
):
    """List bookable stations, persisted and static catalog"""
    inventory = StationInventoryService(db)
    stations, total = inventory.get_stations(skip=skip, limit=limit, city=city)

    return StationSearchResult(
        stations=stations,
        total=total,
        page=(skip // limit) + 1,
        per_page=limit
    )

@router.get("/{station_id}", response_model=StationDetail)
def get_station(station_id: str, db: Session = Depends(get_db)):
    """Get station details with live port status"""
    station = StationInventoryService(db).find_station_by_id(station_id)
    if not station:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Station not found"
        )
    return station
