"""
Monitoring Constants
====================

Physical thresholds and heuristic tuning constants for the fusion engine
and notification pipeline.

These values come from the operational dashboard and have no formal
physical derivation. Keep them as named constants; override through
keyword arguments or the stored threshold configuration, never by editing
call sites.
"""

# =============================================================================
# SIGNAL NORMALIZATION
# =============================================================================
# NOAA products mark missing readings with -9999 (and occasionally -99999).

MISSING_SENTINEL = -9999.0


# =============================================================================
# COUPLING & SMOOTHING
# =============================================================================

NEWELL_SCALE = 1000.0          # Display divisor for dΦ/dt
SOUTH_BZ_THRESHOLD = -3.0      # nT - Bz at or below counts as "south"
SUSTAINED_SOUTH_FRACTION = 0.8 # Fraction of window required for "sustained"
SUSTAINED_SOUTH_MINUTES = 15   # Window used by the state machine
JOIN_TOLERANCE_MINUTES = 5     # Max plasma/field time offset when joining


# =============================================================================
# SUBSTORM STATE MACHINE
# =============================================================================
# Heuristic severity classifier, not a physical model.

MEAN_WINDOW_MINUTES = 15       # dΦ and Bz means
DPHI_BASELINE_SAMPLES = 60     # Moving average length for the WATCH rule

GOES_ONSET_SLOPE = 8.0         # nT/min Hp rise
GOES_ONSET_SLOPE_MINUTES = 2   # Trailing slope window
GOES_ONSET_LOOKBACK_MINUTES = 15

GROUND_ONSET_RATE = 5.0        # nT/min |dB/dt|
GROUND_ONSET_LOOKBACK_MINUTES = 30

IMMINENT_P30 = 0.60
IMMINENT_MIN_SCORE = 25
LIKELY_P60 = 0.60
LIKELY_MIN_SCORE = 20
WATCH_MIN_SCORE = 15


class SubstormStatus:
    """Substorm likelihood states, ordered by severity."""
    QUIET = 'QUIET'
    WATCH = 'WATCH'
    LIKELY_60 = 'LIKELY_60'
    IMMINENT_30 = 'IMMINENT_30'
    ONSET = 'ONSET'

    ORDER = (QUIET, WATCH, LIKELY_60, IMMINENT_30, ONSET)


def status_severity(status: str) -> int:
    """
    Severity rank of a substorm status (QUIET=0 ... ONSET=4).

    Raises:
        ValueError: for an unknown status string
    """
    try:
        return SubstormStatus.ORDER.index(status)
    except ValueError:
        raise ValueError(f"Unknown substorm status: {status!r}") from None


# =============================================================================
# EVENT SEGMENTER (ground magnetometer)
# =============================================================================

EVENT_RATE_THRESHOLD = 5.0     # nT/min
EVENT_COOLDOWN_MINUTES = 10


# =============================================================================
# NOTIFICATIONS
# =============================================================================

REFERENCE_LATITUDE = -42.45    # Greymouth, NZ - the score is computed here
EARTH_RADIUS_KM = 6371.0
ADJUSTMENT_PER_SEGMENT = 0.2   # Score points per segment
ADJUSTMENT_SEGMENT_KM = 10.0
MIN_PLAUSIBLE_ABS_LATITUDE = 30.0

FLARE_PEAK_DECLINE_MINUTES = 5

FETCH_RETRIES = 3
FETCH_BACKOFF_SEC = 1.0        # Linear: attempt * backoff

DEFAULT_COOLDOWN_MINUTES = 30


# Flare classification thresholds (W/m²), GOES 0.1-0.8 nm band
FLARE_THRESHOLDS = {
    'X': 1e-4,   # X-class: >= 10⁻⁴
    'M': 1e-5,   # M-class: >= 10⁻⁵
    'C': 1e-6,   # C-class: >= 10⁻⁶
    'B': 1e-7,   # B-class: >= 10⁻⁷
    'A': 1e-8,
}


def classify_flux(flux: float) -> tuple[str, float]:
    """
    Classify X-ray flux into decade bands.

    Returns:
        (letter, magnitude), e.g. ('M', 2.4) for 2.4e-5 W/m²
    """
    for letter in ('X', 'M', 'C', 'B'):
        if flux >= FLARE_THRESHOLDS[letter]:
            return letter, flux / FLARE_THRESHOLDS[letter]
    return 'A', flux / FLARE_THRESHOLDS['A']


def flux_class_label(flux: float) -> str:
    letter, magnitude = classify_flux(flux)
    return f"{letter}{magnitude:.1f}"


class Topic:
    """Notification topics (one persisted state record each)."""
    AURORA_40 = 'aurora-40percent'
    AURORA_50 = 'aurora-50percent'
    AURORA_60 = 'aurora-60percent'
    AURORA_80 = 'aurora-80percent'
    FLARE_M1 = 'flare-M1'
    FLARE_M5 = 'flare-M5'
    FLARE_X1 = 'flare-X1'
    FLARE_X5 = 'flare-X5'
    FLARE_X10 = 'flare-X10'
    FLARE_PEAK = 'flare-peak'
    SUBSTORM = 'substorm-forecast'
    IPS_SHOCK = 'ips-shock'

    ALL = (
        AURORA_40, AURORA_50, AURORA_60, AURORA_80,
        FLARE_M1, FLARE_M5, FLARE_X1, FLARE_X5, FLARE_X10, FLARE_PEAK,
        SUBSTORM, IPS_SHOCK,
    )

    @staticmethod
    def is_aurora(topic: str) -> bool:
        return topic.startswith('aurora-')
