import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

from openai import OpenAI, OpenAIError

from app.models import CandidateSlot, SmartSlot
from app.services.time_codec import to_minutes

logger = logging.getLogger(__name__)

MAX_SLOTS_FOR_MODEL = 40


def heuristic_score(slot: CandidateSlot) -> SmartSlot:
    minute = to_minutes(slot.start_time) % 60
    if minute == 0:
        score, reason = 85, "Round hour"
    elif minute == 30:
        score, reason = 70, "Half hour"
    else:
        score, reason = 50, "Available time"
    return SmartSlot(start_time=slot.start_time, end_time=slot.end_time, score=score, reason=reason)


class SlotAdvisor:
    """Orders available slots by how attractive they are to book."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
        key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "").strip()
        self.client = client or (OpenAI(api_key=key) if key else None)
        self.llm_available = self.client is not None
        if not self.llm_available:
            logger.warning("Slot advisor using heuristic scoring: OPENAI_API_KEY not set")

    def _heuristic(self, slots: Sequence[CandidateSlot]) -> List[SmartSlot]:
        return [heuristic_score(slot) for slot in slots]

    def _model_scores(self, slots: Sequence[CandidateSlot], context: Dict[str, Any]) -> List[SmartSlot]:
        system_prompt = (
            "You rank appointment time slots for a service marketplace. "
            "Return JSON: {\"slots\": [{\"start_time\": \"HH:MM\", \"score\": 0-100, \"reason\": \"short\"}]}. "
            "Only use start times from the input."
        )
        user_payload = {
            "context": context,
            "slots": [{"start_time": slot.start_time, "end_time": slot.end_time} for slot in slots],
        }
        response = self.client.responses.create(
            model=self.model,
            input=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": json.dumps(user_payload)},
            ],
            temperature=0.2,
        )
        data = json.loads(getattr(response, "output_text", "") or "{}")
        by_start = {slot.start_time: slot for slot in slots}
        scored: List[SmartSlot] = []
        for item in data.get("slots", []):
            slot = by_start.pop(str(item.get("start_time", "")), None)
            if slot is None:
                continue
            score = max(0, min(100, int(item.get("score", 50))))
            reason = str(item.get("reason", "")).strip()[:120] or "Recommended"
            scored.append(SmartSlot(start_time=slot.start_time, end_time=slot.end_time, score=score, reason=reason))
        scored.extend(heuristic_score(slot) for slot in by_start.values())
        return scored

    def score(self, slots: Sequence[CandidateSlot], context: Optional[Dict[str, Any]] = None) -> Tuple[str, List[SmartSlot]]:
        available = [slot for slot in slots if slot.is_available]
        source = "heuristic"
        scored: List[SmartSlot] = []
        if self.llm_available and available:
            try:
                scored = self._model_scores(available[:MAX_SLOTS_FOR_MODEL], context or {})
                scored.extend(heuristic_score(slot) for slot in available[MAX_SLOTS_FOR_MODEL:])
                source = "ai"
            except (OpenAIError, ValueError, TypeError, AttributeError):
                logger.exception("Slot advisor model call failed; using heuristic scoring")
        if source == "heuristic":
            scored = self._heuristic(available)
        scored.sort(key=lambda item: (-item.score, item.start_time))
        return source, scored


slot_advisor = SlotAdvisor()
