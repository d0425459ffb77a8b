"""
Follow-up question generation.
"""

import json
import logging
import re
from typing import List, Optional, Sequence

from rewards_ai.config import get_settings
from rewards_ai.core.gateway import ModelGateway

logger = logging.getLogger(__name__)

MAX_QUESTIONS = 6
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")

FOLLOW_UP_PROMPT = """Based on this conversation about credit card rewards, generate 4-6 relevant follow-up questions the user might want to ask next.

User asked: "{query}"

Assistant responded: "{response}..."

Context topics: {topics}

Generate short, actionable questions (max 8 words each). Return ONLY a JSON array of strings, nothing else.
Example: ["How do I redeem for flights?", "What's my best card for dining?"]"""


class FollowUpGenerator:
    """Best-effort secondary call suggesting next questions. Never raises."""

    def __init__(
        self,
        gateway: ModelGateway,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self.gateway = gateway
        self.model = model or settings.follow_up_model
        self.max_tokens = max_tokens or settings.follow_up_max_tokens
        self.enabled = settings.follow_up_enabled if enabled is None else enabled

    async def generate(
        self,
        query: str,
        response: str,
        context: Sequence[str] = (),
    ) -> List[str]:
        """
        Suggest up to six follow-up questions.

        Returns:
            Questions, or an empty list on any failure
        """
        if not self.enabled:
            return []

        prompt = FOLLOW_UP_PROMPT.format(
            query=query,
            response=response[:500],
            topics=", ".join(context[:3]),
        )

        try:
            completion = await self.gateway.complete(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
            )
            return parse_questions(completion.content)
        except Exception as e:
            logger.warning(f"Follow-up generation failed: {e}")
            return []


def parse_questions(content: str) -> List[str]:
    """Extract the first JSON array of strings from model output."""
    match = _JSON_ARRAY.search(content or "")
    if not match:
        return []
    try:
        questions = json.loads(match.group(0))
    except ValueError:
        logger.debug("Follow-up output was not valid JSON")
        return []
    if not isinstance(questions, list):
        return []
    return [q.strip() for q in questions if isinstance(q, str) and q.strip()][:MAX_QUESTIONS]
