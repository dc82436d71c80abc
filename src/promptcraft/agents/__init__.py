"""
Stage clients: one per pipeline stage, each a single chat-completion call
with internal retries and stage-specific output extraction.
"""

from .base import (
    InvalidAPIKeyError,
    NoChoicesError,
    StageClient,
    StageClientError,
    StageHTTPError,
    StageRequest,
    StageResult,
)
from .coder import CoderClient
from .factory import StageClientFactory
from .planner import PlannerClient
from .reviewer import ReviewerClient
from .themer import ThemerClient

__all__ = [
    "StageClient",
    "StageRequest",
    "StageResult",
    "StageClientError",
    "InvalidAPIKeyError",
    "StageHTTPError",
    "NoChoicesError",
    "PlannerClient",
    "ThemerClient",
    "CoderClient",
    "ReviewerClient",
    "StageClientFactory",
]
