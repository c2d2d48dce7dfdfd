"""
Risk classification.

Turns a token count into a discrete risk level given three ordered
thresholds.

Classification Order:
1. All thresholds zero - no quota configured, always low
2. All thresholds equal - ambiguous configuration, always unknown
3. Runaway value (more than ten times the high threshold) - unknown
4. High, medium, then low bands
"""

from dataclasses import dataclass
from enum import Enum

# Counts beyond this multiple of the high threshold are treated as untrustworthy
RUNAWAY_FACTOR = 10


class RiskLevel(Enum):
    """Cost risk of a prompt relative to the configured thresholds."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RiskThresholds:
    """Three token boundaries used to classify consumption.

    Thresholds are immutable configuration. Degenerate triples (all equal,
    including all zero) are valid and have defined results.
    """
    low: float
    medium: float
    high: float

    def assess(self, tokens: int) -> RiskLevel:
        """Classify a non-negative token count.

        Args:
            tokens: Token count to classify

        Returns:
            RiskLevel for the count; never raises
        """
        if self.low == 0 and self.medium == 0 and self.high == 0:
            return RiskLevel.LOW

        if self.low == self.medium == self.high:
            return RiskLevel.UNKNOWN

        if tokens > self.high * RUNAWAY_FACTOR:
            return RiskLevel.UNKNOWN

        if tokens > self.high:
            return RiskLevel.HIGH

        if tokens > self.medium:
            return RiskLevel.MEDIUM

        if tokens <= self.low:
            return RiskLevel.LOW

        # Counts between low and medium are reported as low
        return RiskLevel.LOW


def classify(tokens: int, thresholds: RiskThresholds) -> RiskLevel:
    """Classify a token count against a threshold triple."""
    return thresholds.assess(tokens)


@dataclass(frozen=True)
class Assessment:
    """Risk of a prompt given current consumption."""
    risk_level: RiskLevel
    total_tokens_used: int
    prompt_tokens: int
    model: str

    @property
    def projected_tokens(self) -> int:
        """Consumption after this prompt is sent."""
        return self.total_tokens_used + self.prompt_tokens
