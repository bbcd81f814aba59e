"""OpenAI chat client used by the extraction oracle (text and screenshots)."""

import base64
import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from plusone.config import settings

logger = logging.getLogger(__name__)

# USD per 1K tokens (input, output)
MODEL_PRICING = {
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.0025, 0.01),
}


class LLMService:
    """
    JSON-mode chat completions with a daily spending ceiling.

    Spend is estimated from token usage and resets at the first call of each
    new day. Once the ceiling is reached every call fails until then.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client
        self._spend_day = date.today()
        self._daily_cost = 0.0
        self._call_count = 0

    async def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.openai_api_key:
                raise ValueError("OpenAI API key not configured")
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.llm_timeout_seconds,
            )
        return self._client

    def _within_budget(self) -> bool:
        today = date.today()
        if today != self._spend_day:
            self._spend_day = today
            self._daily_cost = 0.0

        if not settings.track_llm_costs:
            return True
        return self._daily_cost < settings.llm_cost_limit_per_day

    @staticmethod
    def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
        """Approximate USD cost of one call; unknown models are priced as gpt-4o."""
        # Longest prefix first so "gpt-4o-mini" is not priced as "gpt-4o"
        for name in sorted(MODEL_PRICING, key=len, reverse=True):
            if model.startswith(name):
                input_rate, output_rate = MODEL_PRICING[name]
                break
        else:
            input_rate, output_rate = MODEL_PRICING["gpt-4o"]
        return prompt_tokens / 1000 * input_rate + completion_tokens / 1000 * output_rate

    @staticmethod
    def image_part(data: bytes, mime_type: str = "image/png") -> Dict[str, Any]:
        """Inline image content part (base64 data URL)."""
        encoded = base64.b64encode(data).decode("ascii")
        return {
            "type": "image_url",
            "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
        }

    async def call_llm_json(
        self,
        prompt: str,
        system_prompt: str = "",
        images: Sequence[bytes] = (),
        temperature: Optional[float] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send one prompt (plus optional screenshots) and return the JSON object reply.

        Args:
            prompt: User message text
            system_prompt: Extraction rules
            images: PNG screenshots appended to the user message
            temperature: Defaults to settings.llm_temperature
            model: Defaults to settings.llm_model

        Raises:
            RuntimeError: Daily spending ceiling reached
            ValueError: Missing API key, or the reply is not a JSON object
        """
        model = model or settings.llm_model
        if temperature is None:
            temperature = settings.llm_temperature

        if not self._within_budget():
            logger.warning(
                f"LLM spending ceiling reached (${self._daily_cost:.2f} of "
                f"${settings.llm_cost_limit_per_day:.2f})"
            )
            raise RuntimeError("Daily LLM cost limit exceeded")

        client = await self._get_client()

        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        content.extend(self.image_part(image) for image in images)
        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": content})

        response = await client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=settings.llm_max_tokens,
            response_format={"type": "json_object"},
        )
        self._call_count += 1

        usage = response.usage
        if usage is not None:
            cost = self.estimate_cost(model, usage.prompt_tokens, usage.completion_tokens)
            self._daily_cost += cost
            logger.debug(
                f"{model}: {usage.prompt_tokens}+{usage.completion_tokens} tokens, "
                f"${cost:.4f} (today ${self._daily_cost:.2f})"
            )

        return self.parse_json(response.choices[0].message.content or "")

    @staticmethod
    def parse_json(text: str) -> Dict[str, Any]:
        """Parse a JSON object reply, tolerating a surrounding markdown fence."""
        text = text.strip()
        if text.startswith("```"):
            text = text[3:]
            if text.startswith("json"):
                text = text[4:]
            if text.endswith("```"):
                text = text[:-3]
            text = text.strip()

        if not text:
            return {}

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Unparseable model reply: {e}; starts with {text[:200]!r}")
            raise ValueError(f"Invalid JSON response from LLM: {e}") from e

        if not isinstance(parsed, dict):
            raise ValueError("LLM response is not a JSON object")
        return parsed

    def get_stats(self) -> Dict[str, Any]:
        return {
            "call_count": self._call_count,
            "daily_cost": round(self._daily_cost, 4),
            "cost_limit": settings.llm_cost_limit_per_day,
        }

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
