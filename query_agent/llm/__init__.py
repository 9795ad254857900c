"""
LLM Module for the Query Agent
"""

from .gemini_client import GeminiClient
from .prompts import SystemPrompts, compose_system_prompt

__all__ = ["GeminiClient", "SystemPrompts", "compose_system_prompt"]
