# app/schemas/analysis.py
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


Sentiment = Literal["positive", "negative", "neutral", "mixed"]
EscalationRisk = Literal["low", "medium", "high"]
SatisfactionPrediction = Literal["satisfied", "neutral", "dissatisfied"]

VALID_SENTIMENTS = ("positive", "negative", "neutral", "mixed")
VALID_ESCALATION_RISKS = ("low", "medium", "high")
VALID_SATISFACTION = ("satisfied", "neutral", "dissatisfied")


class CamelModel(BaseModel):
    # The LLM contract and the stored JSON use camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TalkRatio(CamelModel):
    primary_speaker: int
    primary_percentage: int
    secondary_speaker: int
    secondary_percentage: int


class CallAnalysisResult(CamelModel):
    summary: str
    sentiment: Sentiment
    sentiment_score: float
    keywords: List[Any]
    topics: List[Any]
    action_items: List[Any]
    questions: List[Any]
    objections: List[Any]
    escalation_risk: EscalationRisk
    escalation_reasons: List[Any]
    satisfaction_prediction: SatisfactionPrediction
    compliance_flags: List[Any]
    call_disposition: Optional[str] = None
    talk_ratio: Optional[TalkRatio] = None

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# Keys the model must return, in prompt order
REQUIRED_FIELDS = [
    "summary",
    "sentiment",
    "sentimentScore",
    "keywords",
    "topics",
    "actionItems",
    "questions",
    "objections",
    "escalationRisk",
    "escalationReasons",
    "satisfactionPrediction",
    "complianceFlags",
    "callDisposition",
]

ARRAY_FIELDS = [
    "keywords",
    "topics",
    "actionItems",
    "questions",
    "objections",
    "escalationReasons",
    "complianceFlags",
]
