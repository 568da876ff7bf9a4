"""Complaint urgency classification backed by an OpenAI chat model.

The gateway never fails a submission: any error, timeout or unexpected answer
degrades to ``normal``.
"""

import asyncio
import logging
from typing import Optional

from openai import AsyncOpenAI

from .config import Settings
from .metrics import CLASSIFIER_FALLBACKS
from .models import PRIORITY_CRITICAL, PRIORITY_NORMAL

logger = logging.getLogger("grievance.classifier")

SYSTEM_PROMPT = (
    "You triage hostel maintenance complaints. Reply with exactly one word: "
    "'critical' if the issue threatens safety or makes the room unusable "
    "(fire, sparking, exposed wiring, gas smell, flooding, structural damage, "
    "no water or power for the whole floor), otherwise 'normal'."
)


def normalize_priority(label: Optional[str]) -> str:
    """Map a raw classifier answer onto the closed priority set."""
    if label and PRIORITY_CRITICAL in label.strip().lower():
        return PRIORITY_CRITICAL
    return PRIORITY_NORMAL


class PriorityClassifier:
    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.model = settings.classifier_model
        self.timeout = settings.classifier_timeout_seconds
        if client is None and settings.openai_api_key:
            client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=self.timeout, max_retries=0)
        self._client = client
        if self._client is None:
            logger.warning("OPENAI_API_KEY not configured. All complaints will be classified as normal.")

    async def classify(self, description: str) -> str:
        """Single attempt, bounded by the configured timeout."""
        if self._client is None or not description.strip():
            return PRIORITY_NORMAL

        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": description},
                    ],
                    max_tokens=3,
                    temperature=0,
                ),
                timeout=self.timeout,
            )
            label = response.choices[0].message.content if response.choices else None
        except Exception as e:
            CLASSIFIER_FALLBACKS.inc()
            logger.warning("Priority classification failed, defaulting to normal: %s", e)
            return PRIORITY_NORMAL

        priority = normalize_priority(label)
        logger.info("Classified complaint as %s (raw=%r)", priority, label)
        return priority


__all__ = ["PriorityClassifier", "normalize_priority"]
