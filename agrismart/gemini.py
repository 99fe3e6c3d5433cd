import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .config import Settings
from .errors import AIServiceError, ConfigurationError
from .schemas import (
    CropRecommendationInput,
    CropRecommendationOutput,
    DiseaseDetectionInput,
    DiseaseDetectionOutput,
)

logger = logging.getLogger(__name__)

OutputT = TypeVar("OutputT", bound=BaseModel)

# --- Prompt Templates ---
CROP_RECOMMENDATION_PROMPT = """You are an expert agricultural assistant specializing in crop recommendation and cultivation. Your task is to analyze the provided environmental parameters and recommend the most suitable crop, suggest an appropriate fertilizer, and offer actionable cultivation tips tailored to these specific conditions. Each tip in the 'tips' field should start with a bullet point (e.g., '*') and be on a new line.

Environmental Parameters:
- Nitrogen (N): {nitrogen}
- Phosphorus (P): {phosphorus}
- Potassium (K): {potassium}
- Temperature: {temperature} °C
- Humidity: {humidity}%
- pH: {ph}
- Rainfall: {rainfall} mm

Based on these parameters, provide a recommendation in the exact JSON format specified by the output schema, ensuring all fields are accurately filled."""

PLANT_DISEASE_PROMPT = """You are an expert botanist and plant pathologist. Your task is to analyze the provided image of a plant,
identify any diseases present, determine a confidence level for your diagnosis, and then provide clear,
step-by-step instructions for curing the disease, as well as practical tips for preventing its recurrence.

Analyze the attached image.

Provide the disease name, confidence level, detailed cure instructions, and prevention tips in the specified JSON format."""


def response_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    """Gemini ``responseSchema`` for a flat model of string fields."""
    properties = {}
    for name, field in model.model_fields.items():
        key = field.alias or name
        properties[key] = {"type": "STRING", "description": field.description or ""}
    return {"type": "OBJECT", "properties": properties, "required": list(properties)}


def split_data_uri(data_uri: str):
    header, _, payload = data_uri.partition(",")
    mime_type = header[len("data:"):].split(";")[0]
    return mime_type, payload


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-1.5-flash-latest",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiClient":
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            api_base=settings.gemini_api_base,
            timeout=settings.gemini_timeout,
        )

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def generate(self, parts: List[dict], output_model: Type[OutputT], label: str) -> OutputT:
        if not self.api_key:
            raise ConfigurationError("AI key not configured.")

        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": response_schema(output_model),
            },
        }
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(self.url, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException as e:
            raise AIServiceError(f"The AI service did not answer within {self.timeout:g} seconds.") from e
        except httpx.HTTPError as e:
            raise AIServiceError(f"Could not reach the AI service: {e}") from e

        if response.is_error:
            raise _http_error(response)

        result = response.json()
        if "usageMetadata" in result:
            usage = result["usageMetadata"]
            logger.debug(
                "%s token usage: prompt=%s response=%s total=%s",
                label,
                usage.get("promptTokenCount", "N/A"),
                usage.get("candidatesTokenCount", "N/A"),
                usage.get("totalTokenCount", "N/A"),
            )

        text = _candidate_text(result)
        try:
            output = output_model.model_validate_json(text)
        except ValidationError as e:
            logger.warning("%s returned a malformed answer: %s", label, text[:500])
            raise AIServiceError(f"The AI response did not match the expected format ({e.error_count()} problem(s)).") from e
        logger.info("✅ %s completed with model %s.", label, self.model)
        return output


def _http_error(response: httpx.Response) -> AIServiceError:
    code, status, message = response.status_code, "", response.reason_phrase
    try:
        body = response.json().get("error", {})
        code = body.get("code", code)
        status = body.get("status", "")
        message = body.get("message") or message
    except (ValueError, AttributeError):
        pass
    text = f"[{code} {status}] {message}" if status else f"[{code}] {message}"
    return AIServiceError(text, status_code=response.status_code)


def _candidate_text(result: dict) -> str:
    candidates = result.get("candidates") or []
    if not candidates:
        reason = (result.get("promptFeedback") or {}).get("blockReason")
        if reason:
            raise AIServiceError(f"The AI service refused the request ({reason}).")
        raise AIServiceError("The AI service returned no answer.")
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts).strip()
    if not text:
        reason = candidate.get("finishReason", "UNKNOWN")
        raise AIServiceError(f"The AI service returned an empty answer (finish reason: {reason}).")
    return text


# --- AI Flows ---

async def recommend_crop(client: GeminiClient, conditions: CropRecommendationInput) -> CropRecommendationOutput:
    prompt = CROP_RECOMMENDATION_PROMPT.format(**conditions.model_dump())
    return await client.generate([{"text": prompt}], CropRecommendationOutput, "Crop recommendation")


async def generate_plant_disease_cure(client: GeminiClient, photo: DiseaseDetectionInput) -> DiseaseDetectionOutput:
    mime_type, data = split_data_uri(photo.photo_data_uri)
    parts = [
        {"text": PLANT_DISEASE_PROMPT},
        {"inline_data": {"mime_type": mime_type, "data": data}},
    ]
    return await client.generate(parts, DiseaseDetectionOutput, "Plant disease diagnosis")
