from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any

import httpx

from eduflow.core.config import settings

logger = logging.getLogger("eduflow.summarizer")

SOURCE_GEMINI = "gemini"
SOURCE_FALLBACK = "fallback"

GENERATION_CONFIG = {
    "temperature": 0.7,
    "topP": 0.9,
    "topK": 40,
    "maxOutputTokens": 4096,
}

SAFETY_SETTINGS = [
    {"category": c, "threshold": "BLOCK_ONLY_HIGH"}
    for c in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]

PROMPT_TEMPLATE = """다음은 학생의 평가 결과 원본 데이터입니다.
이를 바탕으로 학부모가 이해하기 쉬운 분석 보고서를 작성해주세요.

원본 데이터:
{raw_report}

다음 형식으로 작성해주세요:
■ 학생 정보
■ 학생 통합 분석
▷ 강점
▷ 약점
■ 앞으로의 지도 계획
■ 담임 종합의견
"""


class SummarizerError(RuntimeError):
    pass


class GeminiClient:
    """
    Gemini `generateContent` REST wrapper.
    - only sends the request and pulls the text out of the response
    - prompt building and fallback belong to the caller
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        timeout_s: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._client = httpx.Client(timeout=httpx.Timeout(timeout_s), transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GeminiClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def generate(self, prompt: str, **overrides: Any) -> str:
        url = f"{self._base_url}/models/{self._model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {**GENERATION_CONFIG, **overrides},
            "safetySettings": SAFETY_SETTINGS,
        }
        resp = self._client.post(
            url,
            params={"key": self._api_key},
            headers={"Content-Type": "application/json"},
            json=payload,
        )
        if resp.status_code >= 400:
            raise SummarizerError(f"Gemini request failed: {resp.status_code} {resp.text[:500]}")
        data = resp.json()
        text = self._extract_text(data)
        if not text:
            raise SummarizerError(f"Gemini response parse failed: {json.dumps(data, ensure_ascii=False)[:2000]}")
        return text

    def _extract_text(self, data: dict[str, Any]) -> str | None:
        candidates = data.get("candidates") or []
        if not isinstance(candidates, list) or not candidates:
            return None
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return None
        texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return "\n".join(texts).strip() or None


def post_process(text: str) -> str:
    out = (text or "").strip()
    out = re.sub(r"\n\s*\n\s*\n+", "\n\n", out)
    out = re.sub(r"^#+\s*", "### ", out, flags=re.MULTILINE)
    out = re.sub(r"[“”]", '"', out)
    out = re.sub(r"[‘’]", "'", out)
    return out


_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。])\s+|\n+")
_WORD = re.compile(r"\w+", re.UNICODE)


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text or "") if s and s.strip()]


def extractive_summary(text: str, max_sentences: int | None = None) -> str:
    """Pick the highest-scoring sentences by word frequency, kept in original order."""
    max_sentences = max_sentences or settings.SUMMARY_MAX_SENTENCES
    sentences = split_sentences(text)
    if len(sentences) <= max_sentences:
        return "\n".join(sentences)

    words = [w.lower() for w in _WORD.findall(text) if len(w) > 1]
    freq = Counter(words)

    def score(sentence: str) -> float:
        tokens = [w.lower() for w in _WORD.findall(sentence) if len(w) > 1]
        if not tokens:
            return 0.0
        return sum(freq[t] for t in tokens) / len(tokens)

    ranked = sorted(range(len(sentences)), key=lambda i: (-score(sentences[i]), i))
    keep = sorted(ranked[:max_sentences])
    return "\n".join(sentences[i] for i in keep)


@dataclass(frozen=True, slots=True)
class Summary:
    text: str
    source: str  # gemini | fallback


def build_prompt(raw_report: str) -> str:
    return PROMPT_TEMPLATE.format(raw_report=raw_report.strip())


def default_client() -> GeminiClient | None:
    if not (settings.GEMINI_API_KEY or "").strip():
        return None
    return GeminiClient(
        base_url=settings.GEMINI_BASE_URL,
        api_key=settings.GEMINI_API_KEY,
        model=settings.GEMINI_MODEL,
        timeout_s=settings.GEMINI_TIMEOUT_SECONDS,
    )


def summarize(raw_report: str, client: GeminiClient | None = None) -> Summary:
    """Summary of a raw report; Gemini when possible, local extraction otherwise."""
    text = (raw_report or "").strip()

    def fallback() -> Summary:
        return Summary(text=post_process(extractive_summary(text)), source=SOURCE_FALLBACK)

    if len(text) < settings.SUMMARY_MIN_CHARS:
        return fallback()

    owned = client is None
    client = client or default_client()
    if client is None:
        return fallback()

    try:
        generated = client.generate(build_prompt(text))
        return Summary(text=post_process(generated), source=SOURCE_GEMINI)
    except (SummarizerError, httpx.HTTPError, ValueError) as exc:
        logger.warning("Gemini summary failed, using local summary: %s", exc)
        return fallback()
    finally:
        if owned:
            client.close()
