# app/services/analysis_service.py
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import openai
from pydantic import ValidationError

from app.config import Settings, get_settings
from app.schemas.analysis import (
    ARRAY_FIELDS,
    REQUIRED_FIELDS,
    VALID_ESCALATION_RISKS,
    VALID_SATISFACTION,
    VALID_SENTIMENTS,
    CallAnalysisResult,
    TalkRatio,
)
from app.services.transcription_service import SpeakerStats

log = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)


class AnalysisError(Exception):
    pass


class AnalysisParseError(AnalysisError):
    pass


class AnalysisValidationError(AnalysisError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class AnalysisRangeError(AnalysisValidationError):
    pass


class AnalysisProviderError(AnalysisError):
    pass


@dataclass
class CallMetadata:
    src: str
    dst: str
    duration_seconds: Optional[int]
    direction: str


def build_analysis_prompt(transcript: str, metadata: CallMetadata) -> str:
    return (
        "You are an expert call analyst. Analyze the following call transcript "
        "and provide structured insights.\n\n"
        "Call Details:\n"
        f"- Caller: {metadata.src}\n"
        f"- Destination: {metadata.dst}\n"
        f"- Duration: {metadata.duration_seconds or 0} seconds\n"
        f"- Direction: {metadata.direction}\n\n"
        "Transcript:\n"
        f"{transcript}\n\n"
        "Provide your analysis as a JSON object with EXACTLY this structure "
        "(no markdown, no backticks, just raw JSON):\n"
        "{\n"
        '  "summary": "Brief 2-3 sentence summary of the call",\n'
        '  "sentiment": "positive|negative|neutral|mixed",\n'
        '  "sentimentScore": 0.0 to 1.0,\n'
        '  "keywords": ["keyword1", "keyword2", ...],\n'
        '  "topics": ["topic1", "topic2", ...],\n'
        '  "actionItems": ["action1", "action2", ...],\n'
        '  "questions": ["question1", "question2", ...],\n'
        '  "objections": ["objection1", "objection2", ...],\n'
        '  "escalationRisk": "low|medium|high",\n'
        '  "escalationReasons": ["reason1", "reason2", ...],\n'
        '  "satisfactionPrediction": "satisfied|neutral|dissatisfied",\n'
        '  "complianceFlags": ["flag1", "flag2", ...],\n'
        '  "callDisposition": "Brief outcome of the call"\n'
        "}\n\n"
        "Return ONLY the JSON object, no additional text or formatting."
    )


def parse_analysis_response(raw: str) -> Any:
    """
    Parse the model output as JSON, falling back to a ```json fenced block.
    """
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        pass

    match = _FENCED_JSON.search(raw or "")
    if match:
        try:
            return json.loads(match.group(1))
        except ValueError as exc:
            raise AnalysisParseError(f"Fenced JSON block is not valid JSON: {exc}") from exc

    raise AnalysisParseError("Failed to parse analysis response as JSON")


def validate_analysis(data: Any) -> CallAnalysisResult:
    if not isinstance(data, dict):
        raise AnalysisValidationError("<root>", "Analysis response must be a JSON object")

    for field in REQUIRED_FIELDS:
        if field not in data:
            raise AnalysisValidationError(field, f"Missing required field in analysis: {field}")

    if data["sentiment"] not in VALID_SENTIMENTS:
        raise AnalysisValidationError("sentiment", f"Invalid sentiment value: {data['sentiment']}")

    if data["escalationRisk"] not in VALID_ESCALATION_RISKS:
        raise AnalysisValidationError(
            "escalationRisk", f"Invalid escalation risk: {data['escalationRisk']}"
        )

    if data["satisfactionPrediction"] not in VALID_SATISFACTION:
        raise AnalysisValidationError(
            "satisfactionPrediction",
            f"Invalid satisfaction prediction: {data['satisfactionPrediction']}",
        )

    score = data["sentimentScore"]
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise AnalysisValidationError("sentimentScore", f"Invalid sentiment score: {score!r}")
    if score < 0 or score > 1 or not math.isfinite(score):
        raise AnalysisRangeError(
            "sentimentScore", f"Sentiment score out of range [0.0, 1.0]: {score}"
        )

    for field in ARRAY_FIELDS:
        if not isinstance(data[field], list):
            raise AnalysisValidationError(field, f"Field {field} must be an array")

    try:
        return CallAnalysisResult.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else "<root>"
        raise AnalysisValidationError(field, f"Invalid field {field}: {first['msg']}") from exc


def compute_talk_ratio(speakers: Optional[Sequence[SpeakerStats]]) -> Optional[TalkRatio]:
    """
    Percentages of total talk time for the two speakers with the most airtime.
    """
    if not speakers or len(speakers) < 2:
        return None

    total = sum(s.total_seconds for s in speakers)
    if total <= 0:
        return None

    ranked: List[SpeakerStats] = sorted(speakers, key=lambda s: s.total_seconds, reverse=True)
    first, second = ranked[0], ranked[1]
    return TalkRatio(
        primary_speaker=first.speaker,
        primary_percentage=round(first.total_seconds / total * 100),
        secondary_speaker=second.speaker,
        secondary_percentage=round(second.total_seconds / total * 100),
    )


class CallAnalyzer:
    def __init__(self, client: openai.OpenAI, model: str = "gpt-4.1-mini", max_tokens: int = 2048):
        self._client = client
        self._model = model
        self._max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CallAnalyzer":
        settings = settings or get_settings()
        if not settings.openai_api_key:
            raise AnalysisProviderError("OPENAI_API_KEY is not configured")
        client = openai.OpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.openai_timeout_seconds,
        )
        return cls(client, model=settings.openai_model)

    def _complete(self, prompt: str) -> str:
        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                temperature=0,
                max_tokens=self._max_tokens,
                messages=[
                    {
                        "role": "system",
                        "content": "You analyze phone call transcripts and answer with raw JSON only.",
                    },
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.AuthenticationError as exc:
            raise AnalysisProviderError("Invalid OpenAI API key") from exc
        except openai.RateLimitError as exc:
            raise AnalysisProviderError("OpenAI rate limit exceeded") from exc
        except openai.APITimeoutError as exc:
            raise AnalysisProviderError("OpenAI request timed out") from exc
        except openai.OpenAIError as exc:
            raise AnalysisProviderError(f"Analysis failed: {exc}") from exc

        return resp.choices[0].message.content or ""

    def analyze(
        self,
        transcript: str,
        metadata: CallMetadata,
        speaker_stats: Optional[Sequence[SpeakerStats]] = None,
    ) -> CallAnalysisResult:
        raw = self._complete(build_analysis_prompt(transcript, metadata))
        analysis = validate_analysis(parse_analysis_response(raw))

        talk_ratio = compute_talk_ratio(speaker_stats)
        if talk_ratio is not None:
            analysis.talk_ratio = talk_ratio

        log.info(
            "Analysis complete: %s sentiment, %s escalation risk",
            analysis.sentiment, analysis.escalation_risk,
        )
        return analysis
