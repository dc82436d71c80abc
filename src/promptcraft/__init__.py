"""
promptcraft - turn a prompt into a runnable single-component React app.

A prompt runs through up to four generation stages against an
OpenAI-compatible inference service:

    Planner (JSON plan) -> Themer (design tokens) -> Coder (App component)
    -> Reviewer (fixes and polish)

A fatal Planner, Themer or Coder failure restarts the run in single-stage
mode (Coder only, original prompt). A failed or too-short Reviewer result
keeps the Coder's component.

Quick Start:
    >>> from promptcraft.config import setup_container
    >>>
    >>> container = setup_container()
    >>> orchestrator = container.get("orchestrator")
    >>> state = await orchestrator.generate("Build a timer")
    >>> print(state.status, len(state.final_artifact or ""))

CLI:
    $ export CRAFT_INFERENCE__API_KEY=...
    $ promptcraft generate "Build a timer" --output app.jsx
    $ promptcraft serve

Configuration:
    - CRAFT_INFERENCE__API_KEY (bearer key for the inference service)
    - CRAFT_PIPELINE__MULTI_STAGE=false (coder only)
    - CRAFT_PIPELINE__REVIEWER_MIN_LENGTH=50
    - CRAFT_OBSERVABILITY__LOG_DIR=./logs (markdown and JSON session logs)
"""

__version__ = "1.0.0"

from .config.settings import Settings
from .core.models import GenerationState, PipelineMode, StageKind
from .core.orchestrator import PipelineOrchestrator
from .core.store import StateStore

__all__ = [
    "PipelineOrchestrator",
    "StateStore",
    "GenerationState",
    "PipelineMode",
    "StageKind",
    "Settings",
]
