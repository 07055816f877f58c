"""
Signal Normalizer
=================

Parse heterogeneous upstream responses into uniform, time-ordered series.

Feed shapes:
- NOAA tabular JSON: [header_row, *data_rows] (plasma, mag)
- NOAA object arrays: [{time_tag, Hp, ...}] (GOES magnetometers, X-ray)
- Vendor time series: {data: [{ts, val}], ...} (ground magnetometer)
- Forecast endpoint: {currentForecast, historicalData, dailyHistory, ...}

Sentinels (<= -9999), NaN and non-numeric values become None. The charting
path may keep those gaps; the fusion and notification paths call
drop_missing() and never see them.

A feed that cannot be parsed yields an empty series and a logged warning.
Nothing in here raises on bad upstream data.
"""

import logging
import math
from typing import NamedTuple, Optional

from aurora_sentinel.errors import MalformedSample
from aurora_sentinel.utils.time import parse_time_ms
from .constants import MISSING_SENTINEL
from .validation import require_valid_mag, validate_score

log = logging.getLogger('aurora_sentinel.normalize')


class TimeSeriesPoint(NamedTuple):
    """One reading; value None marks a missing/sentinel reading."""
    time: int
    value: Optional[float]


class MagneticFieldSample(NamedTuple):
    """IMF sample in GSM coordinates (nT). bt >= 0."""
    time: int
    bt: float
    bz: float
    by: float


class PlasmaSample(NamedTuple):
    time: int
    speed: Optional[float]
    density: Optional[float]


class ForecastSnapshot(NamedTuple):
    """The parts of the opaque forecast response the engine consumes."""
    score: Optional[float]
    bt: Optional[float]
    bz: Optional[float]
    last_updated: Optional[int]
    history: list


def to_value(raw) -> Optional[float]:
    """
    Convert a raw feed cell to float, mapping missing markers to None.

    Strings are parsed ('-9999.9' included); booleans are rejected.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= MISSING_SENTINEL:
        return None
    return value


def _sorted(points: list) -> list:
    # Stable sort: duplicate timestamps keep feed order
    return sorted(points, key=lambda p: p.time)


def normalize_table(rows, time_col: str, value_col: str) -> list[TimeSeriesPoint]:
    """
    Normalize NOAA tabular JSON into a TimeSeriesPoint series.

    Args:
        rows: [header_row, *data_rows]
        time_col: Header name of the timestamp column (e.g. 'time_tag')
        value_col: Header name of the value column (e.g. 'speed')

    Returns:
        Ascending series; rows with unparseable timestamps are skipped,
        unparseable values are kept as None.
    """
    columns = _table_columns(rows, time_col, value_col)
    if columns is None:
        return []
    t_idx, v_idx = columns

    points = []
    for row in rows[1:]:
        if not isinstance(row, (list, tuple)) or len(row) <= max(t_idx, v_idx):
            continue
        t = parse_time_ms(row[t_idx])
        if t is None:
            continue
        points.append(TimeSeriesPoint(t, to_value(row[v_idx])))
    return _sorted(points)


def _table_columns(rows, *names: str) -> Optional[tuple]:
    if not isinstance(rows, list) or len(rows) < 2 or not isinstance(rows[0], list):
        log.warning("Tabular feed is empty or has no header row")
        return None
    header = rows[0]
    try:
        return tuple(header.index(name) for name in names)
    except ValueError:
        log.warning(f"Tabular feed missing column(s) {names}; header={header}")
        return None


def normalize_objects(items, time_key: str, value_key: str) -> list[TimeSeriesPoint]:
    """Normalize an object-array feed (e.g. GOES 'time_tag'/'Hp')."""
    if not isinstance(items, list):
        log.warning(f"Object-array feed is not a list ({type(items).__name__})")
        return []

    points = []
    for item in items:
        if not isinstance(item, dict):
            continue
        t = parse_time_ms(item.get(time_key))
        if t is None:
            continue
        points.append(TimeSeriesPoint(t, to_value(item.get(value_key))))
    return _sorted(points)


def normalize_vendor_series(payload) -> list[TimeSeriesPoint]:
    """Normalize the ground magnetometer response {data: [{ts, val}]}."""
    if not isinstance(payload, dict):
        log.warning("Ground magnetometer payload is not an object")
        return []
    return normalize_objects(payload.get('data'), 'ts', 'val')


def normalize_plasma(rows) -> list[PlasmaSample]:
    """Plasma feed -> samples; rows with neither speed nor density are dropped."""
    columns = _table_columns(rows, 'time_tag', 'speed', 'density')
    if columns is None:
        return []
    t_idx, s_idx, d_idx = columns

    samples = []
    for row in rows[1:]:
        try:
            t = parse_time_ms(row[t_idx])
            speed, density = to_value(row[s_idx]), to_value(row[d_idx])
        except (IndexError, TypeError):
            continue
        if t is None or (speed is None and density is None):
            continue
        samples.append(PlasmaSample(t, speed, density))
    return _sorted(samples)


def normalize_mag(rows) -> list[MagneticFieldSample]:
    """
    Magnetic field feed -> samples.

    Any sample with a missing component or negative bt is dropped
    (MalformedSample, never surfaced).
    """
    columns = _table_columns(rows, 'time_tag', 'bt', 'bz_gsm', 'by_gsm')
    if columns is None:
        return []
    t_idx, bt_idx, bz_idx, by_idx = columns

    samples, dropped = [], 0
    for row in rows[1:]:
        try:
            t = parse_time_ms(row[t_idx])
            bt, bz, by = to_value(row[bt_idx]), to_value(row[bz_idx]), to_value(row[by_idx])
        except (IndexError, TypeError):
            dropped += 1
            continue
        if t is None:
            dropped += 1
            continue
        try:
            samples.append(require_valid_mag(MagneticFieldSample(t, bt, bz, by)))
        except MalformedSample as e:
            log.debug(f"Dropping field sample at {t}: {e}")
            dropped += 1

    if dropped:
        log.debug(f"Dropped {dropped} malformed magnetic field rows")
    return _sorted(samples)


def normalize_xray(items, band: str = '0.1-0.8nm') -> list[TimeSeriesPoint]:
    """GOES X-ray feed -> long-band flux series (other bands ignored)."""
    if not isinstance(items, list):
        log.warning("X-ray feed is not a list")
        return []
    long_band = [i for i in items if isinstance(i, dict) and i.get('energy') == band]
    return normalize_objects(long_band, 'time_tag', 'flux')


def drop_missing(series: list[TimeSeriesPoint]) -> list[TimeSeriesPoint]:
    """Remove None readings (fusion / notification path)."""
    return [p for p in series if p.value is not None]


def parse_forecast(payload) -> ForecastSnapshot:
    """
    Extract the score and IMF inputs from the forecast endpoint response.

    The response format is treated as opaque upstream input; only
    currentForecast.spotTheAuroraForecast, currentForecast.inputs.magneticField
    and historicalData are read.
    """
    if not isinstance(payload, dict):
        return ForecastSnapshot(None, None, None, None, [])

    current = payload.get('currentForecast') or {}
    field = (current.get('inputs') or {}).get('magneticField') or {}

    history = []
    raw_history = payload.get('historicalData')
    if isinstance(raw_history, list):
        for entry in raw_history:
            if not isinstance(entry, dict):
                continue
            t = parse_time_ms(entry.get('timestamp'))
            score = to_value(entry.get('baseScore'))
            if t is not None and score is not None:
                history.append(TimeSeriesPoint(t, score))

    score = to_value(current.get('spotTheAuroraForecast'))
    if score is not None:
        check = validate_score(score)
        if not check['is_valid']:
            log.warning(f"Forecast score rejected: {check['error_reason']}")
            score = None

    return ForecastSnapshot(
        score=score,
        bt=to_value(field.get('bt')),
        bz=to_value(field.get('bz')),
        last_updated=parse_time_ms(current.get('lastUpdated')),
        history=_sorted(history),
    )
