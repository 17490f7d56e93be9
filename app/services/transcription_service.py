# app/services/transcription_service.py
"""
Speech-to-text via the Deepgram pre-recorded REST API, with diarization.

The provider returns utterances labelled by speaker; per-speaker stats are
derived here. No retries: a failed call fails the job attempt and the job
queue decides whether to try again.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import requests

log = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"


@dataclass
class Utterance:
    speaker: int
    text: str
    start: float  # seconds
    end: float  # seconds
    confidence: float


@dataclass
class SpeakerStats:
    speaker: int
    total_seconds: float
    word_count: int
    average_confidence: float


@dataclass
class TranscriptionResult:
    text: str
    utterances: List[Utterance] = field(default_factory=list)
    speakers: List[SpeakerStats] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "utterances": [asdict(u) for u in self.utterances],
            "speakers": [asdict(s) for s in self.speakers],
            "duration": self.duration_seconds,
        }


class TranscriptionError(Exception):
    pass


class TranscriptionAuthError(TranscriptionError):
    pass


class InsufficientCreditsError(TranscriptionError):
    pass


class PayloadTooLargeError(TranscriptionError):
    pass


class TranscriptionTimeoutError(TranscriptionError):
    pass


class TranscriptionProviderError(TranscriptionError):
    pass


def build_speaker_stats(utterances: List[Utterance]) -> List[SpeakerStats]:
    """
    Sum talk time and words per speaker, average the confidence, and sort
    by talk time (descending).
    """
    totals: Dict[int, Dict[str, list]] = {}
    for utt in utterances:
        bucket = totals.setdefault(utt.speaker, {"duration": [], "words": [], "confidence": []})
        bucket["duration"].append(utt.end - utt.start)
        bucket["words"].append(len(utt.text.split()))
        bucket["confidence"].append(utt.confidence)

    speakers = [
        SpeakerStats(
            speaker=speaker,
            total_seconds=round(sum(stats["duration"]), 2),
            word_count=sum(stats["words"]),
            average_confidence=round(sum(stats["confidence"]) / len(stats["confidence"]), 2),
        )
        for speaker, stats in totals.items()
    ]
    speakers.sort(key=lambda s: s.total_seconds, reverse=True)
    return speakers


def parse_deepgram_response(data: dict) -> TranscriptionResult:
    results = data.get("results")
    if not results:
        raise TranscriptionProviderError("No transcription results returned from Deepgram")

    channels = results.get("channels") or []
    if not channels:
        raise TranscriptionProviderError("No channel data in transcription results")

    alternatives = channels[0].get("alternatives") or [{}]
    best = alternatives[0]
    text = best.get("transcript") or ""

    utterances = [
        Utterance(
            speaker=int(utt.get("speaker") or 0),
            text=utt.get("transcript") or "",
            start=float(utt.get("start") or 0.0),
            end=float(utt.get("end") or 0.0),
            confidence=float(utt.get("confidence") or 0.0),
        )
        for utt in results.get("utterances") or []
    ]

    duration = (data.get("metadata") or {}).get("duration")
    if duration is None:
        words = best.get("words") or []
        duration = words[-1].get("end", 0.0) if words else 0.0

    return TranscriptionResult(
        text=text,
        utterances=utterances,
        speakers=build_speaker_stats(utterances),
        duration_seconds=round(float(duration), 2),
    )


class DeepgramTranscriber:
    def __init__(
        self,
        api_key: str,
        model: str = "nova-2",
        language: str = "en",
        session: Optional[requests.Session] = None,
        timeout: float = 300.0,
    ):
        if not api_key:
            raise TranscriptionAuthError("DEEPGRAM_API_KEY is not configured")
        self._api_key = api_key
        self._model = model
        self._language = language
        self._session = session or requests.Session()
        self._timeout = timeout

    def transcribe(self, audio: bytes, mime_type: str = "audio/wav") -> TranscriptionResult:
        params = {
            "model": self._model,
            "language": self._language,
            "diarize": "true",
            "punctuate": "true",
            "smart_format": "true",
            "utterances": "true",
        }
        headers = {
            "Authorization": f"Token {self._api_key}",
            "Content-Type": mime_type,
        }

        try:
            resp = self._session.post(
                DEEPGRAM_LISTEN_URL,
                params=params,
                headers=headers,
                data=audio,
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise TranscriptionTimeoutError("Deepgram request timed out") from exc
        except requests.RequestException as exc:
            raise TranscriptionProviderError(f"Transcription failed: {exc}") from exc

        if resp.status_code in (401, 403):
            raise TranscriptionAuthError("Invalid Deepgram API key")
        if resp.status_code == 402:
            raise InsufficientCreditsError("Insufficient Deepgram credits")
        if resp.status_code == 413:
            raise PayloadTooLargeError("Audio file too large")
        if resp.status_code in (408, 504):
            raise TranscriptionTimeoutError("Deepgram request timed out")
        if not resp.ok:
            raise TranscriptionProviderError(
                f"Deepgram API error: HTTP {resp.status_code} {resp.text[:200]}"
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise TranscriptionProviderError("Deepgram returned a non-JSON response") from exc

        result = parse_deepgram_response(data)
        log.info(
            "Transcribed %s chars, %s utterances, %s speakers",
            len(result.text), len(result.utterances), len(result.speakers),
        )
        return result
