"""
Coder stage: produces the ``App`` React component.

In single-stage mode the context holds only the prompt, so the prompt
sections for the plan and theme are simply left out.
"""

from ..core.models import ContextAccumulator, StageKind
from .base import StageClient, extract_app_component, strip_code_fences, strip_think_blocks


class CoderClient(StageClient):
    stage = StageKind.CODER
    invalid_output_message = "Coder agent failed to generate valid code"

    def system_prompt(self) -> str:
        return (
            "You write a single self-contained React functional component named App using "
            "hooks and inline styles. No imports, no exports, no explanations: output only "
            "the component code."
        )

    def user_prompt(self, context: ContextAccumulator) -> str:
        prompt = f"ORIGINAL REQUEST: {context.original_prompt}"
        if context.planner_output:
            prompt += f"\n\n=== PLAN ===\n{context.planner_output}"
        if context.themer_output:
            prompt += f"\n\n=== DESIGN ===\n{context.themer_output}"
        return prompt + (
            "\n\nImplement the request as a working App component. Every control must work, "
            "inputs must be controlled, and the layout must be responsive."
        )

    def extract(self, raw: str) -> str:
        content = strip_think_blocks(strip_code_fences(raw.strip()))
        return extract_app_component(content)
