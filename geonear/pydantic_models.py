'''
Pydantic models for the API endpoints
'''

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Location(BaseModel):
    '''
    One nearest-location result.

    Attributes:
        id (str): Dataset identifier, may be empty.
        name (str): Display label.
        level (Optional[str]): Classification tag from the dataset.
        latitude (float): Latitude as stored in the dataset.
        longitude (float): Longitude as stored in the dataset.
        auxiliaryCode (Optional[str]): Secondary identifier (ISO 639-3 code).
        regionIds (List[str]): Region identifiers.
        distanceMeters (float): Great-circle distance from the query point, whole metres.

    Example:
        {
            "id": "alph1234",
            "name": "Alpha",
            "level": "language",
            "latitude": 1.0,
            "longitude": 1.0,
            "auxiliaryCode": "alp",
            "regionIds": ["FR", "DE"],
            "distanceMeters": 0.0
        }
    '''

    id: str
    name: str
    level: Optional[str] = None
    latitude: float
    longitude: float
    auxiliaryCode: Optional[str] = None
    regionIds: List[str] = Field(default_factory=list)
    distanceMeters: float


class NearestMeta(BaseModel):
    '''
    Metadata about the index that answered a nearest query.

    Attributes:
        count (int): Number of results returned.
        totalIndexed (int): Number of records in the index.
        source (str): Resolved dataset path.
        loadedAt (Optional[datetime]): When the index build completed.
        usingTreeIndex (bool): False when answering from the linear-scan fallback.
    '''

    count: int
    totalIndexed: int
    source: str
    loadedAt: Optional[datetime] = None
    usingTreeIndex: bool


class NearestResp(BaseModel):
    '''
    Response model for the nearest locations search.

    Example:
        {
            "results": [{"id": "alph1234", "name": "Alpha", "distanceMeters": 0.0, ...}],
            "meta": {
                "count": 1,
                "totalIndexed": 3,
                "source": "/srv/data/languoid.csv",
                "loadedAt": "2026-01-01T00:00:00Z",
                "usingTreeIndex": true
            }
        }
    '''

    results: List[Location]
    meta: NearestMeta


class IndexStatsResp(BaseModel):
    sourcePath: str
    totalRowsSeen: int
    totalRowsIndexed: int
    totalRowsSkipped: int
    buildDurationMillis: int
    builtAt: datetime
    usingTreeIndex: bool


class IndexStatusResp(BaseModel):
    '''
    Response model for the index status endpoint.

    Attributes:
        state (str): One of unbuilt, building, ready_tree, ready_linear, failed.
        stats (Optional[IndexStatsResp]): Build statistics, null until a build was attempted.
    '''

    state: str
    stats: Optional[IndexStatsResp] = None


class ErrorResponse(BaseModel):
    '''
    Error body returned when the index cannot answer.

    Attributes:
        error (str): Machine-readable error code.
        detail (str): Human-readable explanation.
    '''

    error: str
    detail: str
