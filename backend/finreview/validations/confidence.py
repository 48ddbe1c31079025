from __future__ import annotations

from typing import Iterable, List, Mapping, Optional

from finreview.config import DEFAULT_CONFIDENCE
from finreview.schemas.record import FieldConfidence


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


def needs_confirmation(field_conf: float, *, threshold: Optional[float] = None) -> bool:
    """True when an extracted value is below the confirmation threshold (strictly less)."""
    thr = threshold if threshold is not None else DEFAULT_CONFIDENCE.confirm_threshold
    return _clamp01(field_conf) < float(thr)


def low_confidence_paths(
    field_confidence: Mapping[str, FieldConfidence],
    *,
    threshold: Optional[float] = None,
) -> List[str]:
    """Paths whose extraction confidence asks for reviewer confirmation, in map order."""
    return [path for path, fc in field_confidence.items() if needs_confirmation(fc.confidence, threshold=threshold)]


def combine_min(values: Iterable[float]) -> float:
    vals = [_clamp01(v) for v in values]
    return min(vals) if vals else 0.0


def confidence_band(conf: float) -> str:
    """Bucket label used by analytics."""
    c = _clamp01(conf)
    if c >= 0.9:
        return "0.9-1.0"
    if c >= 0.8:
        return "0.8-0.9"
    if c >= 0.7:
        return "0.7-0.8"
    if c >= 0.6:
        return "0.6-0.7"
    return "0.0-0.6"
