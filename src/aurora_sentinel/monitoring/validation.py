"""
Data Validation
===============

Validation gates that run at ingestion, BEFORE any coupling or threshold
math. A sample that fails is a MalformedSample: dropped, counted, never
surfaced to callers.
"""

import numpy as np

from aurora_sentinel.errors import MalformedSample


def validate_mag_sample(sample) -> dict:
    """
    Validate an IMF sample (time, bt, bz, by).

    Returns:
        dict with 'is_valid', 'error_type', 'error_reason'
    """
    components = {'bt': sample.bt, 'bz': sample.bz, 'by': sample.by}

    missing = [name for name, v in components.items() if v is None]
    if missing:
        return {
            'is_valid': False,
            'error_type': 'MISSING_COMPONENT',
            'error_reason': f"Missing {', '.join(missing)}",
        }

    if not np.all(np.isfinite(list(components.values()))):
        return {
            'is_valid': False,
            'error_type': 'INVALID_VALUE',
            'error_reason': f'Non-finite component: {components}',
        }

    if sample.bt < 0:
        return {
            'is_valid': False,
            'error_type': 'NEGATIVE_BT',
            'error_reason': f'bt={sample.bt:.2f} nT < 0',
        }

    return {'is_valid': True, 'error_type': None, 'error_reason': None}


def validate_score(score) -> dict:
    """Aurora visibility score must be a finite percentage."""
    if score is None or not np.isfinite(score):
        return {
            'is_valid': False,
            'error_type': 'INVALID_VALUE',
            'error_reason': f'Non-finite score: {score}',
        }
    if not 0 <= score <= 100:
        return {
            'is_valid': False,
            'error_type': 'OUT_OF_RANGE',
            'error_reason': f'Score {score:.1f} outside 0-100',
        }
    return {'is_valid': True, 'error_type': None, 'error_reason': None}


def require_valid_mag(sample):
    """
    Return the sample, or raise MalformedSample when it fails validation.

    Raises:
        MalformedSample: with the validation error type and reason
    """
    check = validate_mag_sample(sample)
    if not check['is_valid']:
        raise MalformedSample(f"{check['error_type']}: {check['error_reason']}")
    return sample
