"""
Fusion models and schemas.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(int, Enum):
    UNCATEGORIZED = 0
    IGNORE = 1
    USEFUL = 2
    IMPORTANT = 3

    @property
    def display_name(self) -> str:
        return self.name.replace("_", " ").title()


DEFAULT_CATEGORY = Category.USEFUL


class Source(str, Enum):
    RULES = "rules"
    MODEL = "model"
    LLM = "llm"


# Fixed evaluation order for every per-source loop.
SOURCES = (Source.RULES, Source.MODEL, Source.LLM)


class Strategy(str, Enum):
    EARLY_STAGE = "early_stage"    # Model has too little data
    LEARNING = "learning"          # Model usable above medium confidence
    DOMINANT = "dominant"          # One source clearly more accurate
    MODEL_BOOST = "model_boost"    # Model improving quickly
    BALANCED = "balanced"          # Full weighted vote


class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    NEUTRAL = "neutral"


class TabItem(BaseModel):
    """Item being categorized: a browser tab."""
    id: Optional[str] = None
    url: str
    title: str = ""


class Prediction(BaseModel):
    """One source's opinion on one item. Absence is ``None``, never a zero category."""
    category: Category
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    probabilities: Optional[List[float]] = None


class TrustWeights(BaseModel):
    rules: float
    model: float
    llm: float

    def get(self, source: Source) -> float:
        return getattr(self, Source(source).value)

    def total(self) -> float:
        return self.rules + self.model + self.llm


class VoteDetail(BaseModel):
    method: Source
    category: Category
    weight: float
    confidence: float
    vote: float


class Decision(BaseModel):
    """Fused output for one item, with provenance."""
    category: Category
    source: str  # rules/model/llm, weighted_vote, consensus, default, or a resolver name
    confidence: float
    reasoning: str
    strategy: str
    timestamp: datetime = Field(default_factory=utcnow)
    votes: Optional[Dict[int, float]] = None
    vote_details: Optional[List[VoteDetail]] = None


class DecisionMetadata(Decision):
    """Decision plus the exact inputs used, kept for later correction/audit."""
    predictions: Dict[Source, Optional[Category]] = {}
    confidences: Dict[Source, float] = {}
    trust_weights: Optional[TrustWeights] = None


class MethodStats(BaseModel):
    accuracy: float
    trust_weight: float
    total_predictions: int
    correct_predictions: int
    recent_accuracy: float
    trend: Trend
    confidence: float


class OverallStats(BaseModel):
    total_predictions: int = 0
    average_accuracy: float = 0.0
    best_method: Optional[Source] = None
    worst_method: Optional[Source] = None


class SystemStats(BaseModel):
    methods: Dict[Source, MethodStats]
    overall: OverallStats
    insights: List[str] = []


class StrategyPlan(BaseModel):
    """Selected strategy and the parameters its decision function needs."""
    model_config = ConfigDict(protected_namespaces=())

    name: Strategy
    description: str
    weights: TrustWeights
    use_model: bool = True
    model_threshold: Optional[float] = None
    fallback_order: List[Source] = []
    primary_method: Optional[Source] = None


class AgreementStats(BaseModel):
    average_agreement: float = 0.0
    perfect_agreement: int = 0
    total_disagreement: int = 0


class VoteSummary(BaseModel):
    total_items: int
    distribution: Dict[int, int]
    agreement_stats: AgreementStats
    decision_sources: Dict[str, int]
    dominant_source: str
    average_confidence: float


class VoteResult(BaseModel):
    categories: Dict[str, Category]
    metadata: Dict[str, DecisionMetadata]
    summary: VoteSummary


class VotingSession(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    item_count: int
    distribution: Dict[int, int]
    agreement_stats: AgreementStats
    strategy_used: str


class MetricRecord(BaseModel):
    """Row in the Performance Store."""
    timestamp: datetime = Field(default_factory=utcnow)
    source: str
    kind: str
    value: float
    metadata: Dict[str, Any] = {}


class TrainingExampleRecord(BaseModel):
    item: TabItem
    category: Category
    source: str
    corrected: bool = False
    metadata: Dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)


class LearningQueueEntry(BaseModel):
    item: TabItem
    old_category: Category
    new_category: Category
    timestamp: datetime = Field(default_factory=utcnow)


class TrainingResult(BaseModel):
    accuracy: Optional[float] = None
    loss: Optional[float] = None


class FeedbackType(str, Enum):
    ACCEPTANCE = "acceptance"
    CORRECTION = "correction"
    IMPLICIT_POSITIVE = "implicit_positive"


class FeedbackEntry(BaseModel):
    type: FeedbackType
    item: TabItem
    category: Category
    timestamp: datetime = Field(default_factory=utcnow)
    confidence: Optional[float] = None
    signal: Optional[str] = None
    weight: int = 1
    old_category: Optional[Category] = None


class RuleSuggestion(BaseModel):
    type: Literal["domain", "url_pattern"]
    value: str
    category: Category
    confidence: float


class CorrectionPatternReport(BaseModel):
    pattern: str
    count: int
    domains: List[str]
    url_patterns: List[str]
    suggestion: Optional[RuleSuggestion] = None


class FeedbackInsight(BaseModel):
    type: Literal["systematic_error", "high_correction_rate"]
    message: str
    severity: Literal["high", "medium"]
    suggestion: Optional[RuleSuggestion] = None
