"""Area of applicability."""

from sarmap.applicability.aoa import (
    ApplicabilityEngine,
    ApplicabilityProfile,
    ApplicabilityResult,
    applicability_threshold,
)

__all__ = [
    "ApplicabilityEngine",
    "ApplicabilityProfile",
    "ApplicabilityResult",
    "applicability_threshold",
]
