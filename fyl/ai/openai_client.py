"""
OpenAI API Client

Thin async wrapper around the OpenAI chat completions API, used by the
product auto-tagging endpoint (vision model with a JSON response).

Usage:
    from fyl.ai import OpenAIClient

    async with OpenAIClient() as client:
        content = await client.generate_with_image(prompt, image_url, json_mode=True)
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from openai import AsyncOpenAI
from rich.console import Console

from config.settings import config as app_config

console = Console()


@dataclass
class OpenAIConfig:
    """Configuration for OpenAI client."""

    api_key: Optional[str] = None

    vision_model: str = field(default_factory=lambda: app_config.auto_tags.model)

    # Timeouts
    timeout_seconds: float = 60.0

    # Generation settings
    temperature: float = field(default_factory=lambda: app_config.auto_tags.temperature)
    max_tokens: int = field(default_factory=lambda: app_config.auto_tags.max_tokens)


class OpenAIClient:
    """Async client for the OpenAI vision model."""

    def __init__(
        self,
        config: Optional[OpenAIConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.config = config or OpenAIConfig()
        if client is not None:
            self._client = client
            return

        api_key = self.config.api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(
                "OpenAI API key not found. Set OPENAI_API_KEY environment variable."
            )
        self._client = AsyncOpenAI(
            api_key=api_key,
            timeout=self.config.timeout_seconds,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self._client.close()

    async def generate_with_image(
        self,
        prompt: str,
        image_url: str,
        model: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Generate a response from a prompt and an image URL.

        Args:
            prompt: Instructions for the model
            image_url: Publicly reachable image
            model: Vision model to use (defaults to vision_model)
            json_mode: Ask the API for a JSON object response

        Returns:
            Generated text, or "" when the API call failed
        """
        params = {
            "model": model or self.config.vision_model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if json_mode:
            params["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**params)
        except Exception as e:
            console.print(f"[red]Error generating vision response: {e}[/red]")
            return ""

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
