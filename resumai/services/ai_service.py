import json
import re
from typing import List, Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from resumai.config import Settings, get_settings
from resumai.errors import AITimeout, MalformedResponse, MissingCredential, TransportError
from resumai.models import ResumeAnalysis

logger = structlog.get_logger(__name__)

JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

IMAGE_INSTRUCTION = (
    "Extract all text from this resume. This is for high-stakes ATS analysis. "
    "Ensure no characters or formatting clues are missed."
)

ANALYSIS_PROMPT = '''Act as a brutal, high-stakes executive recruiter and ATS specialist.

The job market is extremely saturated and competitive. Do NOT be sympathetic. If the resume is weak, say so. If the achievements lack data, point it out.

Provide a detailed audit including:
1. advisorNote: A direct, professional "Recruiter's Audit". Explain why they are or aren't getting interviews in this market. Be blunt and actionable.
2. summary: A technical strength assessment.
3. skills: Verifiable core competencies.
4. job_matches: Roles where they actually stand a chance (suggest 5-7).
5. improvements: Critical fixes required to survive ATS filters.
6. Data points: score (Market impact 0-100), atsScore (Technical parsing health 0-100), missingSkills (Market gaps), and 3 improved versions of current bullet points using the Google XYZ formula (Accomplished [X] as measured by [Y], by doing [Z]).

Resume:
"""
{resume_text}
"""

Return ONLY valid JSON with this exact structure:
{{
  "advisorNote": "string",
  "summary": "string",
  "skills": ["string"],
  "missingSkills": ["string"],
  "job_matches": [{{"role": "string", "fit_score": number, "reason": "string"}}],
  "improvements": [{{"issue": "string", "suggestion": "string", "example_fix": "string"}}],
  "score": number,
  "atsScore": number,
  "improvedBulletPoints": [{{"original": "string", "improved": "string"}}],
  "atsAnalysis": {{
    "formattingStatus": "Good" | "Warning" | "Critical",
    "formattingFeedback": "string",
    "keywordDensityScore": number,
    "standardSectionsFound": ["string"],
    "missingStandardSections": ["string"]
  }}
}}'''


def build_prompt(resume_text: str) -> str:
    return ANALYSIS_PROMPT.format(resume_text=resume_text)


def parse_analysis(text: str) -> ResumeAnalysis:
    """Parse model output into a ResumeAnalysis.

    The whole body is tried as JSON first; if that fails, the first
    ``{...}`` span is extracted and parsed (models like to wrap JSON in
    prose or code fences). Anything else raises MalformedResponse with
    the head of the raw output attached.
    """
    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError:
        match = JSON_OBJECT_RE.search(text)
        if not match:
            raise MalformedResponse(raw=text)
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            raise MalformedResponse(raw=text)
        logger.info("Extracted JSON from surrounding text")

    if not isinstance(data, dict):
        raise MalformedResponse("AI response is not a JSON object", raw=text)

    try:
        return ResumeAnalysis.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedResponse(f"AI response has an invalid structure: {e.error_count()} errors", raw=text)


class AIService:
    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self._owns_client = http_client is None
        self.client = http_client or httpx.Client(timeout=self.settings.ai_timeout_seconds)

    def close(self) -> None:
        # A client passed in by the caller stays open
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "AIService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def endpoint(self) -> str:
        base = self.settings.gemini_api_base.rstrip("/")
        return f"{base}/models/{self.settings.gemini_model}:generateContent"

    def _request(self, method: str, url: str, **kwargs):
        """Send an authenticated request and return the decoded JSON body."""
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise MissingCredential()

        try:
            response = self.client.request(method, url, params={"key": api_key}, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("AI request timed out", exc=str(e))
            raise AITimeout(f"AI request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error("AI request failed", exc=str(e))
            raise TransportError(f"AI request failed: {e}") from e

        if response.is_error:
            logger.error("AI API error", status=response.status_code, body=response.text[:500])
            raise TransportError(
                f"API request failed: {response.status_code} {response.reason_phrase} - {response.text[:500]}"
            )

        try:
            return response.json()
        except ValueError:
            raise MalformedResponse("AI API returned a non-JSON body", raw=response.text)

    def _generate(self, parts: list) -> str:
        """POST a single-turn request and return the first candidate's text."""
        data = self._request("POST", self.endpoint, json={"contents": [{"parts": parts}]})

        try:
            part = data["candidates"][0]["content"]["parts"][0]
        except (KeyError, IndexError, TypeError):
            logger.error("Unexpected AI response structure", body=str(data)[:500])
            raise MalformedResponse("Invalid response structure from API", raw=json.dumps(data))

        return part.get("text") or ""

    def analyze(self, resume_text: str) -> ResumeAnalysis:
        logger.info("Starting resume analysis", chars=len(resume_text), model=self.settings.gemini_model)
        text = self._generate([{"text": build_prompt(resume_text)}])
        if not text:
            raise MalformedResponse("No response text from AI model")

        analysis = parse_analysis(text)
        logger.info("Resume analysis complete", score=analysis.score, ats_score=analysis.ats_score)
        return analysis

    def extract_text_from_image(self, base64_data: str, mime_type: str) -> str:
        logger.info("Starting image text extraction", mime_type=mime_type)
        return self._generate([
            {"inlineData": {"mimeType": mime_type, "data": base64_data}},
            {"text": IMAGE_INSTRUCTION},
        ])

    def list_models(self) -> List[str]:
        """Names of the models the configured key can reach."""
        data = self._request("GET", f"{self.settings.gemini_api_base.rstrip('/')}/models")
        try:
            names = [model["name"] for model in data.get("models", [])]
        except (AttributeError, KeyError, TypeError):
            raise MalformedResponse("Invalid model list from API", raw=json.dumps(data))
        logger.info("Listed AI models", count=len(names))
        return names

    def test_connection(self) -> bool:
        """Check the key and model with a trivial prompt. Never raises."""
        try:
            text = self._generate([{"text": "Say 'API test successful'"}])
        except Exception as e:
            logger.warning("AI connectivity test failed", exc=str(e))
            return False
        return "successful" in text
