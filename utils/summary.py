import re
import json
import time
import logging
from typing import Any, Dict, List

from utils.errors import ConfigurationError, MalformedResponseError, SummaryGenerationError
from utils.groq_integration import get_groq_client, generate_text
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

SUMMARY_LIST_FIELDS = (
    'symptoms',
    'diagnoses',
    'medications',
    'allergies',
    'follow_up_actions',
    'patient_concerns',
    'doctor_recommendations',
)

_CODE_FENCE = re.compile(r'```(?:json)?\n?', re.IGNORECASE)

# (heading, text used when the section is empty)
EXPORT_SECTIONS = (
    ('symptoms', 'SYMPTOMS', 'None mentioned'),
    ('diagnoses', 'DIAGNOSES', 'None mentioned'),
    ('medications', 'MEDICATIONS', 'None prescribed'),
    ('allergies', 'ALLERGIES', 'None mentioned'),
    ('follow_up_actions', 'FOLLOW-UP ACTIONS', 'None scheduled'),
    ('patient_concerns', 'PATIENT CONCERNS', 'None mentioned'),
    ('doctor_recommendations', 'DOCTOR RECOMMENDATIONS', 'None provided'),
)


def format_transcript(messages: List[Dict[str, Any]]) -> str:
    """Render messages as alternating 'Doctor:' / 'Patient:' lines"""
    lines = []
    for msg in messages:
        role = 'Doctor' if msg.get('sender_role') == 'doctor' else 'Patient'
        text = msg.get('original_text') or msg.get('translated_text')
        if not text:
            text = '[audio message]' if msg.get('audio_url') else ''
        lines.append(f"{role}: {text}")
    return "\n".join(lines)


def build_summary_prompt(transcript: str) -> str:
    return f"""You are a medical assistant analyzing a doctor-patient consultation. Read the following conversation and extract key medical information.

CONVERSATION:
{transcript}

Please provide a comprehensive medical summary in the following JSON format:
{{
  "overall_summary": "A brief 2-3 sentence summary of the entire consultation",
  "symptoms": ["list", "of", "symptoms", "mentioned"],
  "diagnoses": ["list", "of", "diagnoses", "or", "suspected", "conditions"],
  "medications": ["list", "of", "medications", "prescribed", "or", "discussed"],
  "allergies": ["list", "of", "allergies", "mentioned"],
  "follow_up_actions": ["list", "of", "follow-up", "tasks", "or", "appointments"],
  "patient_concerns": ["list", "of", "patient", "concerns", "or", "questions"],
  "doctor_recommendations": ["list", "of", "doctor", "advice", "or", "recommendations"]
}}

IMPORTANT INSTRUCTIONS:
- Use empty arrays [] for categories with no information
- Be concise and accurate
- Use medical terminology when appropriate
- Include only information explicitly mentioned in the conversation
- Do not make assumptions or add information not in the conversation
- Return ONLY valid JSON, no additional text

JSON SUMMARY:"""


def _load_json_object(text: str):
    cleaned = _CODE_FENCE.sub('', text).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Model wrapped the object in prose
    json_start = cleaned.find('{')
    json_end = cleaned.rfind('}') + 1
    if json_start == -1 or json_end == 0:
        raise MalformedResponseError("No JSON object found in summary response")
    try:
        return json.loads(cleaned[json_start:json_end])
    except json.JSONDecodeError as parse_error:
        raise MalformedResponseError(f"Summary response is not valid JSON: {parse_error}") from parse_error


def _as_string_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def parse_summary_response(text: str) -> Dict[str, Any]:
    """
    Parse and normalize the model's summary JSON.

    A missing or empty overall_summary is a malformed response; any missing
    list category is filled with an empty list.

    Raises:
        MalformedResponseError
    """
    data = _load_json_object(text)
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Summary response must be a JSON object, got {type(data).__name__}"
        )

    overall_summary = data.get('overall_summary')
    if not isinstance(overall_summary, str) or not overall_summary.strip():
        raise MalformedResponseError("Invalid summary structure: missing overall_summary")

    summary = {'overall_summary': overall_summary.strip()}
    for field in SUMMARY_LIST_FIELDS:
        summary[field] = _as_string_list(data.get(field))
    return summary


def generate_medical_summary(messages: List[Dict[str, Any]], client=None) -> Dict[str, Any]:
    """
    Single attempt at summarizing a consultation transcript.

    Raises:
        ConfigurationError: no language model client is available
        LLMCallError: the model call failed or its answer was unusable
    """
    if client is None:
        client = get_groq_client()
    if client is None:
        raise ConfigurationError("Summary service not configured")

    prompt = build_summary_prompt(format_transcript(messages))
    response_text = generate_text(prompt, client)
    logger.debug(f"Summary response received: {response_text[:200]}...")
    return parse_summary_response(response_text)


def generate_medical_summary_with_retry(messages, max_attempts=3, client=None, sleep=time.sleep):
    """
    Summarize with exponential backoff; there is no fallback summary.

    Raises:
        SummaryGenerationError: every attempt failed, or the service is not configured
    """
    outcome = retry_with_backoff(
        lambda: generate_medical_summary(messages, client=client),
        max_attempts=max_attempts,
        should_retry=lambda error: not isinstance(error, ConfigurationError),
        sleep=sleep,
        description="Summary generation",
    )

    if not outcome.succeeded:
        logger.error(outcome.error)
        raise SummaryGenerationError(
            "Failed to generate medical summary. Please try again."
        ) from outcome.exception

    return outcome.value


def format_summary_text(summary: Dict[str, Any]) -> str:
    """Plain-text export of a summary, suitable for copying into notes"""
    parts = ["MEDICAL CONSULTATION SUMMARY", "", summary.get('overall_summary', '')]
    for field, heading, empty_text in EXPORT_SECTIONS:
        items = summary.get(field) or []
        parts.append("")
        parts.append(f"{heading}:")
        if items:
            parts.extend(f"• {item}" for item in items)
        else:
            parts.append(empty_text)
    return "\n".join(parts)
