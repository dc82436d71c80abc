"""
Themer stage: visual direction and design tokens as plain text.
"""

import re

from ..core.models import ContextAccumulator, StageKind
from .base import StageClient, strip_code_fences

MIN_THEME_LENGTH = 50

_JSON_ARTIFACTS = re.compile(r'[{}"]')


class ThemerClient(StageClient):
    stage = StageKind.THEMER
    invalid_output_message = "No valid theme generated"

    def system_prompt(self) -> str:
        return (
            "You are a product designer. Describe the visual design of a small web app as "
            "plain text design tokens: mood, color roles with hex values, typography, spacing, "
            "radii, shadows and interaction states. Make sure every text color has at least "
            "4.5:1 contrast against its background."
        )

    def user_prompt(self, context: ContextAccumulator) -> str:
        prompt = f"USER REQUEST: {context.original_prompt}"
        if context.planner_output:
            prompt += f"\n\nPLAN:\n{context.planner_output}"
        return prompt + "\n\nWrite the design specification the coder will implement exactly."

    def extract(self, raw: str) -> str:
        content = strip_code_fences(raw.strip())
        content = content.replace('":', ":")
        content = _JSON_ARTIFACTS.sub("", content).strip()
        if len(content) <= MIN_THEME_LENGTH:
            return ""
        return content
