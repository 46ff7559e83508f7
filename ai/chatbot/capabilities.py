"""
Boundary interfaces for capabilities the engine schedules but does not implement.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from app.core.config import settings
from .exceptions import CapabilityError

logger = logging.getLogger(__name__)


class AICapability(ABC):
    """Generates a reply for an ``ai`` node."""

    @abstractmethod
    async def generate(self, prompt: str, user_input: str, context: Dict[str, Any]) -> str:
        ...


class PlaceholderAICapability(AICapability):
    """Stand-in used until a real model is wired in."""

    async def generate(self, prompt: str, user_input: str, context: Dict[str, Any]) -> str:
        return f'AI would respond here based on: "{user_input}"'


async def call_with_timeout(
    capability: AICapability,
    prompt: str,
    user_input: str,
    context: Dict[str, Any],
    timeout: Optional[float] = None
) -> str:
    """Call an AI capability, cancelling it once the time box expires."""
    timeout = timeout if timeout is not None else settings.AI_CALL_TIMEOUT
    try:
        return await asyncio.wait_for(
            capability.generate(prompt, user_input, context),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning(f"AI capability timed out after {timeout}s")
        raise CapabilityError(f"AI call timed out after {timeout}s")
    except CapabilityError:
        raise
    except Exception as e:
        logger.error(f"AI capability failed: {e}")
        raise CapabilityError(f"AI call failed: {e}") from e
