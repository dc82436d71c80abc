"""
Reviewer stage: fixes and polishes the coder's component.

Only the component is extracted here. Whether the result is long enough to
replace the coder's output is decided by the orchestrator.
"""

from ..core.models import ContextAccumulator, StageKind
from .base import StageClient, extract_app_component, strip_code_fences, strip_think_blocks


class ReviewerClient(StageClient):
    stage = StageKind.REVIEWER
    invalid_output_message = "Reviewer returned no component"

    def system_prompt(self) -> str:
        return (
            "You review React components. Fix broken state handling, event handlers and "
            "unreadable color combinations, remove features nobody asked for, and return the "
            "complete corrected App component with no commentary."
        )

    def user_prompt(self, context: ContextAccumulator) -> str:
        prompt = f"ORIGINAL USER REQUEST: {context.original_prompt}"
        if context.planner_output:
            prompt += f"\n\n=== PLAN ===\n{context.planner_output}"
        if context.themer_output:
            prompt += f"\n\n=== DESIGN ===\n{context.themer_output}"
        if context.coder_output:
            prompt += f"\n\n=== CODE TO REVIEW ===\n{context.coder_output}"
        return prompt + "\n\nReturn the final, working App component."

    def extract(self, raw: str) -> str:
        content = strip_think_blocks(strip_code_fences(raw.strip()))
        return extract_app_component(content)
