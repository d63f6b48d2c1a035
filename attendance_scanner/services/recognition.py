import io
import json
import base64
import asyncio
import logging
from typing import Any, Dict, Optional

import requests
from PIL import Image
from pydantic import ValidationError
from nicegui import run

from attendance_scanner.core import config_manager
from attendance_scanner.core.models import Accepted, Rejected, Verdict, VerifierResponse

logger = logging.getLogger(__name__)

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "is_valid": {"type": "BOOLEAN"},
        "is_institution_card": {"type": "BOOLEAN"},
        "student_name": {"type": "STRING"},
        "identifier": {"type": "STRING"},
        "rejection_reason": {"type": "STRING"},
        "confidence": {"type": "NUMBER"},
    },
    "required": ["is_valid", "student_name", "identifier"],
}

PROMPT_TEMPLATE = """Analyze this image of what should be a {institution} student ID card.

IMPORTANT: You must verify this is a GENUINE {institution} ID card by checking:
{cues}

If this is NOT a {institution} ID card, or if it's any other object/document:
- Set is_valid to false
- Set rejection_reason to explain why

If this IS a valid {institution} ID card:
- Extract the student name into student_name
- Extract the {label} into identifier
- Set is_valid to true

Be STRICT - only accept genuine {institution} ID cards. Return ONLY JSON."""


class RecognitionError(Exception):
    """The verification call failed: transport, status or response shape."""


def build_prompt(config: Dict[str, Any]) -> str:
    cues = "\n".join(f"{i}. {cue}" for i, cue in enumerate(config["institution_cues"], start=1))
    return PROMPT_TEMPLATE.format(
        institution=config["institution_name"],
        label=config["identifier_label"],
        cues=cues,
    )


def prepare_frame(frame: bytes, max_dimension: int) -> bytes:
    """Downscales huge frames and re-encodes them as JPEG. Small JPEGs pass through untouched."""
    try:
        with Image.open(io.BytesIO(frame)) as img:
            if img.format == 'JPEG' and max(img.size) <= max_dimension:
                return frame
            img = img.convert('RGB')
            if max(img.size) > max_dimension:
                img.thumbnail((max_dimension, max_dimension))
            out = io.BytesIO()
            img.save(out, format='JPEG', quality=80)
            return out.getvalue()
    except (OSError, ValueError) as e:
        raise RecognitionError(f"Unreadable frame: {e}") from e


def parse_verdict_payload(body: Dict[str, Any]) -> VerifierResponse:
    """Extracts the model's JSON answer from a generateContent response."""
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
        raise RecognitionError("Response has no candidate text") from e

    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise RecognitionError("Candidate text is not JSON") from e

    if not isinstance(data, dict):
        raise RecognitionError("Candidate JSON is not an object")

    try:
        return VerifierResponse(**data)
    except ValidationError as e:
        raise RecognitionError(f"Verdict does not match schema: {e.error_count()} errors") from e


class RecognitionClient:
    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or config_manager.load_config()

    @property
    def endpoint(self) -> str:
        return f"{self.config['api_base']}/models/{self.config['model_name']}:generateContent"

    def build_payload(self, frame: bytes) -> Dict[str, Any]:
        return {
            "contents": [{
                "role": "user",
                "parts": [
                    {"text": build_prompt(self.config)},
                    {"inlineData": {"mimeType": "image/jpeg", "data": base64.b64encode(frame).decode('ascii')}},
                ],
            }],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    def classify(self, response: VerifierResponse) -> Verdict:
        if not response.is_valid or response.is_institution_card is False:
            return Rejected(reason=(response.rejection_reason or "").strip() or "Invalid ID Card")

        min_confidence = float(self.config.get("min_confidence") or 0.0)
        if min_confidence > 0 and (response.confidence is None or response.confidence < min_confidence):
            logger.info(f"Rejecting card below confidence threshold: {response.confidence}")
            return Rejected(reason="Low confidence")

        return Accepted(student_name=(response.student_name or "").strip(), identifier=response.identifier or "")

    async def verify(self, frame: bytes) -> Verdict:
        """Sends one frame to the verifier. Makes exactly one request, never retries."""
        api_key = self.config.get("api_key")
        if not api_key:
            raise RecognitionError("No API key configured")

        frame = prepare_frame(frame, int(self.config["max_frame_dimension"]))
        payload = self.build_payload(frame)
        timeout = float(self.config["request_timeout"])

        try:
            try:
                response = await run.io_bound(
                    requests.post, self.endpoint, params={"key": api_key}, json=payload, timeout=timeout
                )
            except RuntimeError:
                # Fallback for environments without the NiceGUI event loop integration
                response = await asyncio.to_thread(
                    requests.post, self.endpoint, params={"key": api_key}, json=payload, timeout=timeout
                )
        except requests.RequestException as e:
            raise RecognitionError(f"Request failed: {e}") from e

        if response.status_code != 200:
            raise RecognitionError(f"API Error: {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise RecognitionError("Response body is not JSON") from e

        verdict = self.classify(parse_verdict_payload(body))
        logger.info(f"Verifier verdict: {verdict}")
        return verdict


recognition_client = RecognitionClient()
