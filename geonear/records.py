'''
In-memory record types shared by the loader and the index.
'''

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class PointRecord:
    '''
    One dataset row with parsed coordinates.

    Attributes:
        id (str): dataset identifier, "" when absent.
        name (str): display label, "" when absent.
        level (Optional[str]): classification tag.
        latitude (float): degrees, stored exactly as parsed.
        longitude (float): degrees, stored exactly as parsed.
        auxiliary_code (Optional[str]): secondary identifier (ISO 639-3 style code).
        region_ids (Tuple[str, ...]): region identifiers split from the source field.
        raw_fields (Mapping[str, str]): the full trimmed source row.
    '''

    id: str
    name: str
    level: Optional[str]
    latitude: float
    longitude: float
    auxiliary_code: Optional[str] = None
    region_ids: Tuple[str, ...] = ()
    raw_fields: Mapping[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class NearestResult:
    record: PointRecord
    distance_meters: float


@dataclass(frozen=True)
class IndexStats:
    source_path: str
    total_rows_seen: int
    total_rows_indexed: int
    total_rows_skipped: int
    build_duration_millis: int
    built_at: datetime
    using_tree_index: bool


class IndexState(str, enum.Enum):
    UNBUILT = "unbuilt"
    BUILDING = "building"
    READY_TREE = "ready_tree"
    READY_LINEAR = "ready_linear"
    FAILED = "failed"
