"""GPS accuracy classification.

Tiers are bucketed on horizontal accuracy alone. Each threshold is the
inclusive upper bound of the better tier, so exactly 5 m is still EXCELLENT.
"""

import math

from speedly.models import AccuracyReport, LocationFix, QualityTier

TIER_THRESHOLDS = [
    (5.0, QualityTier.EXCELLENT),
    (15.0, QualityTier.GOOD),
    (50.0, QualityTier.FAIR),
    (100.0, QualityTier.POOR),
]


def classify(horizontal_accuracy_m: float) -> QualityTier:
    """Map a horizontal accuracy in meters to a quality tier."""
    # Negative accuracy is the platform's "invalid" marker
    if math.isnan(horizontal_accuracy_m) or horizontal_accuracy_m < 0:
        return QualityTier.UNAVAILABLE
    for threshold, tier in TIER_THRESHOLDS:
        if horizontal_accuracy_m <= threshold:
            return tier
    return QualityTier.UNAVAILABLE


def build_report(fix: LocationFix) -> AccuracyReport:
    return AccuracyReport(
        horizontal_accuracy_m=fix.horizontal_accuracy_m,
        speed_accuracy=fix.speed_accuracy,
        tier=classify(fix.horizontal_accuracy_m),
    )
