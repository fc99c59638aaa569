from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import ClassVar, List, Tuple


class PatternType(str, Enum):
    COMMUNICATION_STYLE = "communication_style"
    VERBOSITY = "verbosity"
    TOPIC_PREFERENCE = "topic_preference"
    ENGAGEMENT = "engagement"


@dataclass
class Pattern:
    """
    A behavioral signal derived from recent history.

    ``frequency`` is the share of the sample that backs the signal and
    ``sample_size`` how many messages, texts or sessions were examined.
    """
    evidence: List[str]
    confidence: float
    frequency: float
    sample_size: int

    kind: ClassVar[PatternType]

    @property
    def evidence_text(self) -> str:
        return "; ".join(self.evidence)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.kind.value
        return data


@dataclass
class CommunicationStylePattern(Pattern):
    style: str = "gentle"  # gentle | direct | supportive

    kind: ClassVar[PatternType] = PatternType.COMMUNICATION_STYLE


@dataclass
class VerbosityPattern(Pattern):
    verbosity: str = "moderate"  # concise | moderate | detailed

    kind: ClassVar[PatternType] = PatternType.VERBOSITY


@dataclass
class TopicPreferencePattern(Pattern):
    topics: List[str] = field(default_factory=list)

    kind: ClassVar[PatternType] = PatternType.TOPIC_PREFERENCE


@dataclass
class EngagementPattern(Pattern):
    level: str = "medium"  # high | medium | low
    average_messages: float = 0.0
    average_duration: float = 0.0  # minutes

    kind: ClassVar[PatternType] = PatternType.ENGAGEMENT


@dataclass
class TimeAnalysis:
    preferred_hours: List[int] = field(default_factory=list)
    preferred_days: List[int] = field(default_factory=list)  # 0 = Sunday
    average_session_duration: float = 0.0  # minutes
    typical_range: Tuple[float, float] = (0.0, 0.0)

    def to_dict(self) -> dict:
        return {
            "preferred_hours": list(self.preferred_hours),
            "preferred_days": list(self.preferred_days),
            "average_session_duration": self.average_session_duration,
            "typical_range": list(self.typical_range),
        }
