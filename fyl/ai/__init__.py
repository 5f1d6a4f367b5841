"""
AI features for the FYL back-office.

Product auto-tagging with the OpenAI vision model. Add to .env:
OPENAI_API_KEY=sk-...
"""

from .auto_tags import AutoTagError, AutoTagger, build_prompt, parse_tag_response
from .openai_client import OpenAIClient, OpenAIConfig

__all__ = [
    # Client
    "OpenAIClient",
    "OpenAIConfig",
    # Tagging
    "AutoTagger",
    "AutoTagError",
    "build_prompt",
    "parse_tag_response",
]
