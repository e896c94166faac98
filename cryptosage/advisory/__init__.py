# Advisory Module
# Watcher / Executor advisors behind a retrying, validating gateway

from .schema import (
    Action,
    Decision,
    Opportunity,
    OrderKind,
    PlanRequest,
    ScoreRequest,
    clamp_unit,
)
from .gateway import Advisor, AdvisoryGateway
from .llm import OpenAIAdvisor, parse_json_content

__all__ = [
    "Action",
    "Advisor",
    "AdvisoryGateway",
    "Decision",
    "OpenAIAdvisor",
    "Opportunity",
    "OrderKind",
    "PlanRequest",
    "ScoreRequest",
    "clamp_unit",
    "parse_json_content",
]
