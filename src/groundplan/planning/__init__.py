"""Wave scheduling and plan artifacts."""

from groundplan.planning.models import ExecutionPlan, Phase, PlanStep, Wave
from groundplan.planning.render import load_plan, render_plan_text, save_plan
from groundplan.planning.scheduler import PlanScheduler

__all__ = [
    "ExecutionPlan",
    "Phase",
    "PlanScheduler",
    "PlanStep",
    "Wave",
    "load_plan",
    "render_plan_text",
    "save_plan",
]
