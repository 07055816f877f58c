"""
Aurora Sentinel Monitoring Module
=================================

Feed fetching, normalization, coupling, event segmentation and the
substorm state machine.

Usage:
    from aurora_sentinel.monitoring import fetch_all, build_context

    ctx = build_context(fetch_all(load_settings()))
    print(ctx.assessment.status, ctx.assessment.likelihood_pct)
"""

from .constants import (
    SubstormStatus,
    Topic,
    status_severity,
    classify_flux,
    flux_class_label,
)
from .normalize import (
    TimeSeriesPoint,
    MagneticFieldSample,
    PlasmaSample,
    ForecastSnapshot,
    normalize_table,
    normalize_objects,
    normalize_vendor_series,
    normalize_plasma,
    normalize_mag,
    normalize_xray,
    parse_forecast,
    drop_missing,
)
from .validation import validate_mag_sample
from .coupling import (
    newell_coupling,
    moving_average,
    moving_average_series,
    slope_per_minute,
    rate_series,
    south_fraction,
    is_sustained_south,
    build_coupling_window,
    CouplingWindow,
)
from .events import NzMagEvent, segment_events
from .substorm import (
    SubstormInputs,
    SubstormAssessment,
    substorm_probabilities,
    classify_substorm,
    goes_onset,
    ground_onset,
)
from .feeds import Feed, fetch_json, fetch_all
from .fusion import FusionContext, build_context, assess
from .formatting import StatusFormatter

__all__ = [
    # Constants
    'SubstormStatus',
    'Topic',
    'status_severity',
    'classify_flux',
    'flux_class_label',
    # Normalizer
    'TimeSeriesPoint',
    'MagneticFieldSample',
    'PlasmaSample',
    'ForecastSnapshot',
    'normalize_table',
    'normalize_objects',
    'normalize_vendor_series',
    'normalize_plasma',
    'normalize_mag',
    'normalize_xray',
    'parse_forecast',
    'drop_missing',
    'validate_mag_sample',
    # Coupling
    'newell_coupling',
    'moving_average',
    'moving_average_series',
    'slope_per_minute',
    'rate_series',
    'south_fraction',
    'is_sustained_south',
    'build_coupling_window',
    'CouplingWindow',
    # Events
    'NzMagEvent',
    'segment_events',
    # Substorm
    'SubstormInputs',
    'SubstormAssessment',
    'substorm_probabilities',
    'classify_substorm',
    'goes_onset',
    'ground_onset',
    # Feeds & fusion
    'Feed',
    'fetch_json',
    'fetch_all',
    'FusionContext',
    'build_context',
    'assess',
    # Output
    'StatusFormatter',
]
