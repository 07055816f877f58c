"""
Fusion Context
==============

One refresh cycle's view of all feeds, passed around explicitly.

build_context() normalizes every raw feed independently (a feed that fails
to parse becomes empty and is marked unavailable), derives the ground
magnetometer rate series and events, and runs the substorm classifier.
Later cycles build a new context; nothing is carried over.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from aurora_sentinel.utils.time import now_ms as _now_ms
from .constants import SubstormStatus
from .coupling import rate_series
from .events import NzMagEvent, segment_events
from .feeds import Feed
from .normalize import (
    ForecastSnapshot,
    drop_missing,
    normalize_mag,
    normalize_objects,
    normalize_plasma,
    normalize_vendor_series,
    normalize_xray,
    parse_forecast,
)
from .substorm import (
    SubstormAssessment,
    classify_substorm,
    derive_inputs,
    goes_onset,
    ground_onset,
    insufficient_data,
)

log = logging.getLogger('aurora_sentinel.fusion')


@dataclass
class FusionContext:
    now_ms: int
    plasma: list = field(default_factory=list)
    mag: list = field(default_factory=list)
    goes_primary: list = field(default_factory=list)
    goes_secondary: list = field(default_factory=list)
    xray: list = field(default_factory=list)
    ground_field: list = field(default_factory=list)
    ground_rates: list = field(default_factory=list)
    forecast: ForecastSnapshot = field(default_factory=lambda: parse_forecast(None))
    ips: list = field(default_factory=list)
    events: list[NzMagEvent] = field(default_factory=list)
    available: dict = field(default_factory=dict)
    assessment: Optional[SubstormAssessment] = None

    @property
    def score(self) -> Optional[float]:
        return self.forecast.score

    @property
    def hp(self) -> list:
        """Primary GOES Hp, falling back to the secondary spacecraft."""
        return self.goes_primary or self.goes_secondary

    @property
    def latest_xray_flux(self) -> Optional[float]:
        return self.xray[-1].value if self.xray else None


_PARSERS = {
    Feed.PLASMA: lambda raw: {'plasma': normalize_plasma(raw)},
    Feed.MAG: lambda raw: {'mag': normalize_mag(raw)},
    Feed.GOES_PRIMARY: lambda raw: {'goes_primary': drop_missing(normalize_objects(raw, 'time_tag', 'Hp'))},
    Feed.GOES_SECONDARY: lambda raw: {'goes_secondary': drop_missing(normalize_objects(raw, 'time_tag', 'Hp'))},
    Feed.XRAY: lambda raw: {'xray': drop_missing(normalize_xray(raw))},
    Feed.FORECAST: lambda raw: {'forecast': parse_forecast(raw)},
    Feed.IPS: lambda raw: {'ips': raw if isinstance(raw, list) else []},
    Feed.GROUND_MAG: lambda raw: {'ground_field': drop_missing(normalize_vendor_series(raw))},
}


def build_context(raw_feeds: dict, now_ms: Optional[int] = None,
                  ground_is_rate: bool = False) -> FusionContext:
    """
    Normalize raw feed payloads into a FusionContext and classify.

    Args:
        raw_feeds: feed name -> raw JSON (None for unavailable feeds)
        now_ms: Evaluation time (defaults to the wall clock)
        ground_is_rate: The ground magnetometer series is already dB/dt;
            otherwise the rate is derived from consecutive field samples
    """
    ctx = FusionContext(now_ms=now_ms if now_ms is not None else _now_ms())

    for name, parser in _PARSERS.items():
        raw = raw_feeds.get(name)
        if raw is None:
            ctx.available[name] = False
            continue
        try:
            parsed = parser(raw)
        except (TypeError, ValueError, OverflowError, KeyError, AttributeError) as e:
            log.warning(f"{name}: parse failed, treating as empty ({e})")
            ctx.available[name] = False
            continue
        for attr, value in parsed.items():
            setattr(ctx, attr, value)
        ctx.available[name] = True

    ctx.ground_rates = ctx.ground_field if ground_is_rate else rate_series(ctx.ground_field)
    ctx.events = segment_events(ctx.ground_rates)
    ctx.assessment = assess(ctx)
    return ctx


def assess(ctx: FusionContext) -> SubstormAssessment:
    """Classify substorm status for the context's evaluation time."""
    inputs = derive_inputs(ctx.plasma, ctx.mag, ctx.hp, ctx.ground_rates,
                           ctx.score, now_ms=ctx.now_ms)
    if inputs is not None:
        return classify_substorm(inputs)

    # No coupling data, but an onset signature still forces ONSET
    result = insufficient_data()
    if goes_onset(ctx.hp, ctx.now_ms) or ground_onset(ctx.ground_rates, ctx.now_ms):
        result.status = SubstormStatus.ONSET
        result.reason = "Onset signature (coupling data unavailable)"
    return result
