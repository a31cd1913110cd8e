# OpenAI-backed Analysis and Extraction services

import asyncio
import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional

import openai as openai_mod
from openai import AsyncOpenAI
from pydantic.alias_generators import to_snake

from . import config
from .errors import AnalysisError
from .models import AnalysisOutcome, ComplaintBase

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# AI Helpers: Client, Retry, Truncation
# ---------------------------------------------------------------------------
def build_openai_client() -> Optional[AsyncOpenAI]:
    if not config.OPENAI_API_KEY:
        return None
    return AsyncOpenAI(api_key=config.OPENAI_API_KEY)

def truncate_text(text: str, max_chars: int = 3000) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."

async def openai_chat(client: AsyncOpenAI, messages: list, json_mode: bool = False,
                      max_retries: int = 3, model: Optional[str] = None) -> Optional[str]:
    kwargs = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    for attempt in range(max_retries):
        try:
            resp = await client.chat.completions.create(
                model=model or config.OPENAI_MODEL, messages=messages, **kwargs)
            return resp.choices[0].message.content.strip()
        except (openai_mod.RateLimitError, openai_mod.APIConnectionError) as e:
            logger.warning("OpenAI retry %d: %s", attempt + 1, e)
            if attempt == max_retries - 1:
                raise
            await asyncio.sleep(2 ** attempt)
        except Exception as e:
            logger.error("OpenAI error: %s", e)
            return None
    return None

# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------
DEPARTMENT_GUIDE = (
    "Department Assignment Guidelines:\n"
    "- Operations: Train delays, cancellations, schedule issues\n"
    "- Maintenance: Coach defects, broken equipment, infrastructure issues\n"
    "- Customer Service: Staff behavior, information issues, general service\n"
    "- Security: Safety concerns, theft, harassment, unauthorized persons\n"
    "- Medical: Health emergencies, medical facilities\n"
    "- Catering: Food quality, water availability, vending services\n"
    "- Electrical: AC/heating issues, lighting, charging points\n"
    "- Cleaning: Cleanliness issues in coaches or stations\n"
    "- Ticketing: Booking, cancellation, refund issues\n"
    "- Management: Corruption, policy issues, escalations"
)

def _coerce_urgency(value: Any, default: float = 3) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return max(0.0, min(10.0, score))

def _coerce_keywords(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


class AnalysisService:
    """Classifies a complaint: category, urgency, summary, keywords, department."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.client = client if client is not None else build_openai_client()
        self.model = model or config.OPENAI_MODEL

    @staticmethod
    def build_prompt(complaint: ComplaintBase) -> str:
        return (
            "You are an AI assistant for a railway complaint system. Analyze the following complaint "
            "and return a JSON object with keys: category, urgencyScore, summary, keywords, "
            "suggestedDepartment.\n"
            "The passenger has already pre-categorized the complaint; use this as a strong hint, "
            "but correct it if the description clearly indicates a different category.\n\n"
            f'Complaint Area: "{complaint.complaint_area}"\n'
            f'PNR: "{getattr(complaint, "pnr", None) or "N/A"}"\n'
            f'Journey Date: "{getattr(complaint, "journey_date", None) or "N/A"}"\n'
            f'Incident Date: "{complaint.incident_date or "N/A"}"\n'
            f'Complaint Type: "{complaint.complaint_type}"\n'
            f'Complaint Sub-Type: "{complaint.complaint_sub_type}"\n\n'
            f'Full Description: "{truncate_text(complaint.description, 2800)}"\n\n'
            "Urgency score (0-10) bands:\n"
            "  1-3: Minor inconveniences (cleanliness, wifi)\n"
            "  4-6: System failures or service delays (AC not working, late train)\n"
            "  7-8: Health risks or significant distress (no water, pests)\n"
            "  9-10: Critical safety or emergency (medical, harassment, accident)\n\n"
            f"{DEPARTMENT_GUIDE}"
        )

    async def analyze(self, complaint: ComplaintBase) -> AnalysisOutcome:
        if self.client is None:
            raise AnalysisError("OpenAI API key is not configured")
        result = await openai_chat(self.client, [{"role": "user", "content": self.build_prompt(complaint)}],
                                   json_mode=True, model=self.model)
        if not result:
            raise AnalysisError(f"No analysis returned for {complaint.id}")
        try:
            data = json.loads(result)
        except json.JSONDecodeError as e:
            raise AnalysisError(f"Analysis for {complaint.id} was not JSON: {e}") from e
        if not isinstance(data, dict):
            raise AnalysisError(f"Analysis for {complaint.id} was not an object")
        data = {to_snake(k): v for k, v in data.items()}
        return AnalysisOutcome(
            category=data.get("category") or "Other",
            urgency_score=_coerce_urgency(data.get("urgency_score")),
            summary=data.get("summary") or "Analysis could not generate a summary.",
            keywords=_coerce_keywords(data.get("keywords")),
            suggested_department=data.get("suggested_department") or config.DEFAULT_DEPARTMENT,
        )

# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------
EXTRACTED_FIELDS = (
    "pnr", "uts_number", "journey_date", "incident_date", "incident_time",
    "complaint_area", "complaint_type", "complaint_sub_type", "description",
    "train_number", "coach_number", "seat_number", "nearest_station",
    "unauthorized_people_count", "mobile_number", "platform_number",
)
STRUCTURE_MARKERS = ("Issue:", "Location:", "PNR:")
PNR_RE = re.compile(r"\b\d{10}\b")
ISO_DATE_RE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")
MARKER_RE = re.compile(r"Issue:|Location:|Time:|PNR:")


def has_complaint_structure(summary: str) -> bool:
    return any(marker in summary for marker in STRUCTURE_MARKERS) or len(summary) > 50


def fallback_extract(summary: str, bot_response: str = "") -> Dict[str, Any]:
    """Rule-based extraction used when the model is unavailable or fails."""
    today = date.today().isoformat()
    lowered = summary.lower()
    extracted: Dict[str, Any] = {}

    if "train" in lowered or "coach" in lowered:
        extracted["complaint_area"] = "TRAIN"
    elif "station" in lowered or "platform" in lowered:
        extracted["complaint_area"] = "STATION"
    else:
        extracted["complaint_area"] = "TRAIN"

    pnr = PNR_RE.search(summary)
    if pnr:
        extracted["pnr"] = pnr.group(0)

    found_date = ISO_DATE_RE.search(summary)
    if found_date:
        extracted["journey_date"] = found_date.group(0)
        extracted["incident_date"] = found_date.group(0)
    else:
        extracted["incident_date"] = today

    if len(summary) > 20:
        extracted["description"] = MARKER_RE.sub("", summary).strip()
    else:
        extracted["description"] = f"Complaint submitted via chatbot on {today}"

    if extracted["complaint_area"] == "TRAIN":
        extracted["complaint_type"] = "Coach - Maintenance"
        extracted["complaint_sub_type"] = "AC/Heating"
    else:
        extracted["complaint_type"] = "Passenger Amenities"
        extracted["complaint_sub_type"] = "Others"
    return extracted


class ExtractionService:
    """Turns a chat-bot complaint summary into structured complaint fields."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self.client = client if client is not None else build_openai_client()
        self.model = model or config.OPENAI_MODEL

    @staticmethod
    def build_prompt(summary: str, bot_response: str) -> str:
        return (
            "You are analyzing a complaint summary from a railway complaint assistant bot. "
            "Extract the complaint details from this structured summary.\n\n"
            f'Complaint Summary: "{truncate_text(summary, 2000)}"\n'
            f'Bot Confirmation Response: "{truncate_text(bot_response, 1000)}"\n\n'
            "Return a JSON object using only these keys (omit unknown ones): "
            f"{', '.join(EXTRACTED_FIELDS)}.\n"
            '- complaint_area: one of [TRAIN, STATION]\n'
            "- pnr: exactly 10 digits\n"
            "- dates as YYYY-MM-DD, incident_time as HH:mm\n"
            "- unauthorized_people_count: integer\n"
            f"Current date for fallback: {date.today().isoformat()}\n"
            "If information is missing, provide reasonable defaults based on context."
        )

    async def extract(self, summary: str, bot_response: str = "") -> Optional[Dict[str, Any]]:
        if self.client is None:
            logger.warning("OpenAI API key is not configured; using fallback parsing for chatbot complaint")
            return fallback_extract(summary, bot_response)
        if not has_complaint_structure(summary):
            logger.info("No complaint structure found in chat summary")
            return None
        try:
            result = await openai_chat(self.client,
                                       [{"role": "user", "content": self.build_prompt(summary, bot_response)}],
                                       json_mode=True, model=self.model)
            if result:
                data = json.loads(result)
                if isinstance(data, dict):
                    data = {to_snake(k): v for k, v in data.items()}
                    return {k: v for k, v in data.items() if k in EXTRACTED_FIELDS and v not in (None, "")}
        except Exception as e:
            logger.error("Chat extraction error: %s", e)
        logger.info("Falling back to rule-based chat extraction")
        return fallback_extract(summary, bot_response)
