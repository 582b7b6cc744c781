from __future__ import annotations

import math
from statistics import NormalDist
from typing import Mapping, Optional

from .models import ClassTally, ContaminationEstimate, FragmentClass
from .utils import clamp


def z_for_confidence(confidence: float) -> float:
    """Two-sided standard normal quantile (0.95 -> ~1.96)."""
    return NormalDist().inv_cdf(0.5 + confidence / 2.0)


def wilson_interval(
    contaminant: int,
    clean: int,
    *,
    confidence: float = 0.95,
) -> Optional[ContaminationEstimate]:
    """Wilson score interval for the contaminant fraction, in percent.

    Returns None when there is nothing to estimate from (no clean and no
    contaminant fragments).
    """
    k = float(contaminant)
    n = k + float(clean)
    if n == 0:
        return None

    z = z_for_confidence(confidence)
    p = k / n
    c = p + 0.5 * z * z / n
    w = z * math.sqrt(p * (1 - p) / n + 0.25 * z * z / (n * n))
    d = 1 + z * z / n

    return ContaminationEstimate(
        lower=clamp(100.0 * (c - w) / d, 0.0, 100.0),
        estimate=100.0 * p,
        upper=clamp(100.0 * (c + w) / d, 0.0, 100.0),
        contaminant=int(contaminant),
        total=int(n),
    )


def build_tally(counts: Mapping[FragmentClass, int], *, confidence: float = 0.95) -> ClassTally:
    full = {cls: int(counts.get(cls, 0)) for cls in FragmentClass}
    estimate = wilson_interval(
        full[FragmentClass.CONTAMINANT],
        full[FragmentClass.CLEAN],
        confidence=confidence,
    )
    return ClassTally(counts=full, estimate=estimate)
