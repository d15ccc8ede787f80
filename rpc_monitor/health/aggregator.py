"""Per-endpoint scoring and fleet roll-up. Pure functions, no state."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .rpc import CheckOutcome

HEALTHY_THRESHOLD = 80.0
PARTIAL_THRESHOLD = 50.0


class HealthBucket(str, Enum):
    HEALTHY = "healthy"
    PARTIALLY_HEALTHY = "partiallyHealthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthScore:
    successful_tests: int
    total_tests: int

    @property
    def score(self) -> float:
        if self.total_tests == 0:
            return 0.0
        return self.successful_tests / self.total_tests * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "successfulTests": self.successful_tests,
            "totalTests": self.total_tests,
        }


@dataclass(frozen=True)
class FleetSummary:
    total: int
    healthy: int
    partially_healthy: int
    unhealthy: int

    @property
    def overall_health(self) -> float:
        if self.total == 0:
            return 0.0
        return self.healthy / self.total * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "healthy": self.healthy,
            "partiallyHealthy": self.partially_healthy,
            "unhealthy": self.unhealthy,
            "overallHealth": self.overall_health,
        }


def score(outcomes: Iterable[CheckOutcome]) -> HealthScore:
    """Share of successful outcomes. An empty battery scores 0."""
    outcomes = list(outcomes)
    return HealthScore(
        successful_tests=sum(1 for o in outcomes if o.success),
        total_tests=len(outcomes),
    )


def classify(
    value: float,
    healthy_threshold: float = HEALTHY_THRESHOLD,
    partial_threshold: float = PARTIAL_THRESHOLD,
) -> HealthBucket:
    if value >= healthy_threshold:
        return HealthBucket.HEALTHY
    if value >= partial_threshold:
        return HealthBucket.PARTIALLY_HEALTHY
    return HealthBucket.UNHEALTHY


def summarize(
    scores: Iterable[HealthScore],
    healthy_threshold: float = HEALTHY_THRESHOLD,
    partial_threshold: float = PARTIAL_THRESHOLD,
) -> FleetSummary:
    """Bucket every endpoint score; the three counts always add up to total."""
    counts = {bucket: 0 for bucket in HealthBucket}
    for s in scores:
        counts[classify(s.score, healthy_threshold, partial_threshold)] += 1
    return FleetSummary(
        total=sum(counts.values()),
        healthy=counts[HealthBucket.HEALTHY],
        partially_healthy=counts[HealthBucket.PARTIALLY_HEALTHY],
        unhealthy=counts[HealthBucket.UNHEALTHY],
    )
