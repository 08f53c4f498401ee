"""
Vision model client for workplace safety analysis.

Sends one or more workplace photos plus a fixed inspection prompt to an
OpenAI vision model and validates the JSON answer as an ``AuditResult``.
No retries: a failed call fails the audit.

Example usage:
    analyzer = VisionAnalyzer()
    result = await analyzer.analyze(audit.image_data, industry="warehouse")
    print(result.overall_score, len(result.violations))
"""

import json
import os
import re
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI
from pydantic import ValidationError

from core.errors import AnalysisError
from core.logging import get_logger
from core.models import AuditResult, IndustryType

logger = get_logger(__name__)

VISION_MODEL = os.environ.get("VISION_MODEL", "gpt-4o")
VISION_TIMEOUT_SECS = float(os.environ.get("VISION_TIMEOUT_SECS", "120"))
VISION_MAX_TOKENS = 4096
VISION_TEMPERATURE = 0.3

ANALYSIS_PROMPT = """You are a professional workplace safety and compliance inspector. Examine the workplace photo for safety and compliance violations.

Respond with ONLY a JSON object (no markdown, no code fences) shaped exactly like this:
{
  "overall_score": <0-100, where 100 means no hazards at all>,
  "summary": "<2-3 sentence overview of the safety state>",
  "industry_detected": "<restaurant|construction|warehouse|retail|office|general>",
  "violations": [
    {
      "id": <integer, starting at 1, unique>,
      "category": "<fire_safety|electrical|ergonomic|slip_trip_fall|chemical|ppe|structural|hygiene|emergency_exit|general>",
      "severity": "<critical|high|medium|low>",
      "title": "<short violation title>",
      "description": "<what is wrong and why it is a hazard>",
      "location": "<where in the image it is visible>",
      "recommendation": "<specific corrective action>",
      "regulatory_reference": "<OSHA/FDA/NFPA reference if one applies, otherwise empty string>"
    }
  ],
  "compliant_areas": ["<things that look safe>"],
  "priority_fixes": ["<the three most urgent fixes>"]
}

Report only violations you can see evidence of in the image. Score higher when the space looks generally safe and lower when serious hazards are present."""

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def build_prompt(industry: Optional[str], image_count: int) -> str:
    """
    Compose the instruction text for one analysis request.

    Args:
        industry: Industry declared at upload; ``general`` adds nothing
        image_count: Number of photos sent in the same request

    Returns:
        Prompt text
    """
    prompt = ANALYSIS_PROMPT

    if industry and industry != IndustryType.GENERAL.value:
        prompt += (
            f"\n\nThe user indicated this is a {industry} environment. "
            "Pay special attention to regulations specific to that industry."
        )

    if image_count > 1:
        prompt += (
            f"\n\nYou are analyzing {image_count} photos of the same location. "
            "Produce a single combined report covering all of them."
        )

    return prompt


def build_messages(images: Sequence[str], industry: Optional[str]) -> List[Dict[str, Any]]:
    content: List[Dict[str, Any]] = [{"type": "text", "text": build_prompt(industry, len(images))}]
    content.extend(
        {"type": "image_url", "image_url": {"url": url, "detail": "high"}}
        for url in images
    )
    return [{"role": "user", "content": content}]


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def parse_analysis_response(text: Optional[str]) -> AuditResult:
    """
    Validate the model's raw answer.

    Surrounding code fences are removed before parsing. Anything that is
    not a JSON object matching ``AuditResult`` raises ``AnalysisError``.

    Example:
        >>> parse_analysis_response('```json\\n{"overall_score": 90, "summary": "ok"}\\n```').overall_score
        90
    """
    if not text:
        raise AnalysisError("Empty response from vision model")

    cleaned = strip_code_fences(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise AnalysisError(f"Vision model returned invalid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise AnalysisError("Vision model returned a non-object JSON value")

    try:
        return AuditResult.model_validate(payload)
    except ValidationError as exc:
        raise AnalysisError(f"Vision model response failed validation: {exc.error_count()} errors") from exc


class VisionAnalyzer:
    """
    Thin async wrapper around the OpenAI chat completions API.

    The client is created lazily so the app can start without an API key;
    pass ``client`` to inject a preconfigured or fake one.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = VISION_MODEL,
                 timeout: float = VISION_TIMEOUT_SECS):
        self._client = client
        self.model = model
        self.timeout = timeout

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=os.environ.get("OPENAI_API_KEY"),
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def analyze(self, images: Sequence[str], industry: Optional[str] = None) -> AuditResult:
        if not images:
            raise AnalysisError("No images to analyze")

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=build_messages(images, industry),
            max_tokens=VISION_MAX_TOKENS,
            temperature=VISION_TEMPERATURE,
        )

        content = response.choices[0].message.content if response.choices else None
        result = parse_analysis_response(content)
        logger.info(
            "Vision analysis parsed",
            extra={
                "model": self.model,
                "image_count": len(images),
                "overall_score": result.overall_score,
                "violations": result.violations_count,
            },
        )
        return result


_default_analyzer: Optional[VisionAnalyzer] = None


def get_analyzer() -> VisionAnalyzer:
    """FastAPI dependency returning the shared analyzer."""
    global _default_analyzer
    if _default_analyzer is None:
        _default_analyzer = VisionAnalyzer()
    return _default_analyzer
