"""Wrapper around OpenAI for drafting campaign messages."""
from __future__ import annotations

import json
import logging
import os
from typing import Dict

from django.conf import settings
from openai import OpenAI

LOGGER = logging.getLogger(__name__)


class MessageGeneratorError(RuntimeError):
    """Raised when AI message generation fails."""


class MessageGenerator:
    """Drafts campaign message copy from a short brief."""

    def __init__(self, *, api_key: str | None = None, model: str | None = None) -> None:
        self.api_key = api_key or getattr(settings, 'OPENAI_API_KEY', '') or os.getenv('OPENAI_API_KEY')
        if not self.api_key:
            raise MessageGeneratorError('OPENAI_API_KEY is not configured')
        self.model = model or getattr(settings, 'OPENAI_MODEL', 'gpt-4.1-mini')
        self.client = OpenAI(api_key=self.api_key)

    def _build_prompt(self, *, objective: str, audience: str | None, tone: str | None) -> str:
        audience_line = f"Audience: {audience}\n" if audience else ''
        tone_line = f"Tone: {tone}\n" if tone else ''
        return (
            "Write a short, personalised marketing message for a customer campaign.\n"
            "Keep it under 300 characters and include a clear call to action.\n"
            "Return strictly formatted JSON with a single key 'message'.\n\n"
            f"Objective: {objective}\n"
            f"{audience_line}{tone_line}"
        )

    def _parse_payload(self, payload: str) -> Dict[str, str]:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            LOGGER.error('Failed to parse OpenAI response: %s', exc)
            raise MessageGeneratorError('Invalid response from AI model') from exc
        message = data.get('message') if isinstance(data, dict) else None
        if not isinstance(message, str) or not message.strip():
            raise MessageGeneratorError('AI model returned empty message payload')
        return {'message': message.strip()}

    def generate_message(self, *, objective: str, audience: str | None = None, tone: str | None = None) -> Dict[str, str]:
        prompt = self._build_prompt(objective=objective, audience=audience, tone=tone)
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                temperature=0.7,
                response_format={'type': 'json_object'},
                messages=[
                    {'role': 'system', 'content': 'You are an expert CRM marketing copywriter.'},
                    {'role': 'user', 'content': prompt},
                ],
            )
        except Exception as exc:  # pragma: no cover - external API
            LOGGER.exception('OpenAI API call failed')
            raise MessageGeneratorError('Unable to reach OpenAI API') from exc

        content = (completion.choices[0].message.content or '').strip()
        return self._parse_payload(content)
