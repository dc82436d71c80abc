"""
Planner stage: turns the request into a structured JSON development plan.
"""

import json

from ..core.models import ContextAccumulator, StageKind
from ..observability.logging import get_logger
from .base import StageClient, strip_code_fences

logger = get_logger(__name__)

REQUIRED_PLAN_FIELDS = (
    "features",
    "macroFlows",
    "acceptanceCriteria",
    "testChecklist",
    "architecture",
    "userExperience",
)


class PlannerClient(StageClient):
    stage = StageKind.PLANNER
    invalid_output_message = "No valid plan generated"

    def system_prompt(self) -> str:
        fields = ", ".join(REQUIRED_PLAN_FIELDS)
        return (
            "You plan small single-page web applications built as one React component. "
            "Keep the scope to what the request needs and nothing more. "
            f"Answer with a single JSON object containing exactly these keys: {fields}. "
            "Do not wrap the JSON in prose."
        )

    def user_prompt(self, context: ContextAccumulator) -> str:
        return (
            f"USER REQUEST: {context.original_prompt}\n\n"
            "Write a minimal development plan: the essential features, the main user flows, "
            "acceptance criteria, a short test checklist, the component architecture and the "
            "intended user experience. Return it as JSON."
        )

    def extract(self, raw: str) -> str:
        content = strip_code_fences(raw.strip())
        try:
            plan = json.loads(content)
        except json.JSONDecodeError:
            logger.debug("Planner output is not valid JSON", length=len(content))
            return ""
        if not isinstance(plan, dict):
            return ""
        missing = [name for name in REQUIRED_PLAN_FIELDS if name not in plan]
        if missing:
            logger.debug("Planner output missing fields", missing=",".join(missing))
            return ""
        return content
