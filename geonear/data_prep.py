'''
Locate the locations CSV and stream it into PointRecords.
'''


from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd
import structlog

from geonear.CONSTANTS import (
    AUXILIARY_CODE_COLUMN,
    DEFAULT_CHUNK_SIZE,
    ID_COLUMN,
    LATITUDE_COLUMN,
    LEVEL_COLUMN,
    LONGITUDE_COLUMN,
    NAME_COLUMN,
    REGION_IDS_COLUMN,
)
from geonear.errors import ConfigurationError, DatasetParseError, DatasetReadError
from geonear.records import PointRecord

log = structlog.get_logger(__name__)

REGION_ID_SEPARATORS = re.compile(r"[,;\s]+")


@dataclass(frozen=True)
class LoadResult:
    records: List[PointRecord] = field(default_factory=list)
    total_rows_seen: int = 0
    total_rows_kept: int = 0
    total_rows_skipped: int = 0


def _is_readable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


def resolve_source_path(candidates: Iterable[Path], override: Optional[Path] = None) -> Path:
    '''
    Pick the dataset file to load.

    Inputs:
        candidates: default locations, tried in order
        override: explicitly configured path; when set it is the only path used
    Returns:
        Path - the first readable file, resolved to an absolute path
    Raises:
        ConfigurationError - if the override is missing, or no candidate exists
    '''

    if override is not None:
        override = Path(override).resolve()
        if _is_readable_file(override):
            return override
        raise ConfigurationError(
            f"Configured locations CSV not found or unreadable: {override}"
        )

    tried = []
    for candidate in candidates:
        candidate = Path(candidate).resolve()
        tried.append(str(candidate))
        if _is_readable_file(candidate):
            return candidate

    raise ConfigurationError(
        "Could not locate the locations CSV; set LOCATIONS_CSV_PATH. "
        f"Tried: {', '.join(tried) or '(no candidates)'}"
    )


def parse_region_ids(raw) -> tuple:
    '''
    Split a region id list on commas, semicolons or whitespace runs.

    Example:
        parse_region_ids("FR; DE ,ES") -> ("FR", "DE", "ES")
    '''

    if not raw:
        return ()
    return tuple(t.strip() for t in REGION_ID_SEPARATORS.split(str(raw)) if t.strip())


def _optional(value) -> Optional[str]:
    return value if value else None


def _to_record(row: dict, latitude: float, longitude: float) -> PointRecord:
    return PointRecord(
        id=row.get(ID_COLUMN, ""),
        name=row.get(NAME_COLUMN, ""),
        level=_optional(row.get(LEVEL_COLUMN)),
        latitude=latitude,
        longitude=longitude,
        auxiliary_code=_optional(row.get(AUXILIARY_CODE_COLUMN)),
        region_ids=parse_region_ids(row.get(REGION_IDS_COLUMN)),
        raw_fields=row,
    )


def _clean_chunk(chunk: pd.DataFrame) -> pd.DataFrame:
    # Short rows come back as NaN even with keep_default_na=False
    chunk = chunk.fillna("")
    chunk.columns = [str(c).strip() for c in chunk.columns]
    for col in chunk.columns:
        chunk[col] = chunk[col].astype(str).str.strip()

    # Whitespace-only lines survive skip_blank_lines; drop them here
    not_blank = (chunk != "").any(axis=1)
    return chunk.loc[not_blank]


def _coordinates(chunk: pd.DataFrame, column: str) -> np.ndarray:
    if column not in chunk.columns:
        return np.full(len(chunk), np.nan)
    return pd.to_numeric(chunk[column], errors="coerce").to_numpy(dtype=float)


def load_records(path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> LoadResult:
    '''
    Stream a header-row CSV into PointRecords, chunk by chunk.

    Rows whose latitude or longitude is missing, empty or non-numeric are
    counted as skipped and left out; they never fail the load.

    Inputs:
        path: Path - CSV file with at least `latitude` and `longitude` columns
        chunk_size: int - rows parsed per pandas chunk
    Returns:
        LoadResult - kept records plus row counters
    Raises:
        DatasetReadError - if the file cannot be opened or read to the end
        DatasetParseError - if the file is not a well-formed CSV
    '''

    records: List[PointRecord] = []
    seen = 0
    skipped = 0
    warned_missing_columns = False

    try:
        with pd.read_csv(
            path,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            chunksize=chunk_size,
            encoding="utf-8-sig",
        ) as reader:
            for chunk in reader:
                chunk = _clean_chunk(chunk)
                if not len(chunk):
                    continue

                if not warned_missing_columns and not {
                    LATITUDE_COLUMN, LONGITUDE_COLUMN
                } <= set(chunk.columns):
                    log.warning(
                        "coordinate_columns_missing",
                        path=str(path),
                        columns=list(chunk.columns),
                    )
                    warned_missing_columns = True

                lats = _coordinates(chunk, LATITUDE_COLUMN)
                lons = _coordinates(chunk, LONGITUDE_COLUMN)
                valid = np.isfinite(lats) & np.isfinite(lons)

                seen += len(chunk)
                skipped += int((~valid).sum())

                rows = chunk.to_dict(orient="records")
                for row, lat, lon, ok in zip(rows, lats, lons, valid):
                    if ok:
                        records.append(_to_record(row, float(lat), float(lon)))
    except pd.errors.EmptyDataError:
        log.warning("locations_csv_empty", path=str(path))
        return LoadResult()
    except pd.errors.ParserError as exc:
        raise DatasetParseError(f"Malformed CSV at {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise DatasetParseError(f"CSV at {path} is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise DatasetReadError(f"Failed reading {path}: {exc}") from exc

    return LoadResult(
        records=records,
        total_rows_seen=seen,
        total_rows_kept=len(records),
        total_rows_skipped=skipped,
    )


# Run script
if __name__ == "__main__":
    from geonear.log_config import configure_logging
    from geonear.settings import get_settings

    settings = get_settings()
    configure_logging(settings)
    source = resolve_source_path(settings.source_candidates(), settings.locations_csv_path)
    result = load_records(source, chunk_size=settings.csv_chunk_size)
    log.info(
        "locations_loaded",
        path=str(source),
        seen=result.total_rows_seen,
        kept=result.total_rows_kept,
        skipped=result.total_rows_skipped,
    )
