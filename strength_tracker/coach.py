from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import httpx

from .config import get_config
from .env import get_env

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
MISSING_KEY_MESSAGE = "API Key missing. Cannot generate substitute."
UNAVAILABLE_MESSAGE = "Sorry, I couldn't connect to the AI Coach right now."
NO_ANSWER_MESSAGE = "No substitution found."


@dataclass(frozen=True)
class Equipment:
    id: str
    name: str


@dataclass(frozen=True)
class Exercise:
    id: str
    name: str
    target_muscle: str
    required_equipment: list[str] = field(default_factory=list)
    description: str = ""


def build_prompt(exercise: Exercise, available_equipment: Sequence[Equipment]) -> str:
    equipment_list = ", ".join(item.name for item in available_equipment)
    required = ", ".join(exercise.required_equipment) or "none"
    return (
        "You are an expert biomechanics and fitness coach.\n\n"
        f'The user wants to perform: "{exercise.name}"\n'
        f'Target muscle: "{exercise.target_muscle}"\n'
        f"Equipment that exercise needs: {required}\n\n"
        f"The user ONLY has the following equipment available: [{equipment_list}]\n\n"
        "Recommend ONE biomechanically similar substitute exercise that can be performed "
        "with the available equipment. Explain briefly why it is a good substitute and how "
        "to perform it safely. Keep the response under 100 words."
    )


def _resolve_api_key() -> Optional[str]:
    return get_env("GEMINI_API_KEY") or os.environ.get("API_KEY") or None


def _extract_text(payload: Any) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()


class CoachClient:
    """
    Suggests exercise substitutes through the Gemini ``generateContent`` API.

    Every failure (missing key, network, auth, unexpected payload) becomes a
    short apology string so callers never see an exception.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else _resolve_api_key()
        self.model = model or get_config().coach_model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def generate_substitute(
        self,
        exercise: Exercise,
        available_equipment: Sequence[Equipment],
    ) -> str:
        if not self.api_key:
            return MISSING_KEY_MESSAGE

        body = {"contents": [{"parts": [{"text": build_prompt(exercise, available_equipment)}]}]}
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
                headers={"x-goog-api-key": self.api_key},
            ) as client:
                response = client.post(f"/models/{self.model}:generateContent", json=body)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            logger.error("Coach request failed: %s", exc)
            return UNAVAILABLE_MESSAGE
        except ValueError as exc:
            logger.error("Coach returned an unreadable payload: %s", exc)
            return UNAVAILABLE_MESSAGE

        return _extract_text(payload) or NO_ANSWER_MESSAGE


def generate_substitute(exercise: Exercise, available_equipment: Sequence[Equipment]) -> str:
    return CoachClient().generate_substitute(exercise, available_equipment)
