"""
Career plan generation.

Two generation calls: expectations for the owner's current level, then for
the next level using the first answer as reference. Both are saved onto the
owner's profile.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import BaseModel

from ...integrations.base import GenerationClient
from ...schemas.operations import OperationType
from .base import JobHandler

logger = structlog.get_logger()

NEXT_LEVEL = {
    "Junior Software Engineer": "Software Engineer",
    "Software Engineer": "Senior Software Engineer",
    "Senior Software Engineer": "Staff Software Engineer",
    "Staff Software Engineer": "Principal Software Engineer",
    "Principal Software Engineer": "Distinguished Engineer",
    "Associate Product Manager": "Product Manager",
    "Product Manager": "Senior Product Manager",
    "Senior Product Manager": "Principal Product Manager",
    "Principal Product Manager": "Director of Product",
    "Junior Designer": "Product Designer",
    "Product Designer": "Senior Product Designer",
    "Senior Product Designer": "Staff Product Designer",
    "Staff Product Designer": "Principal Designer",
    "Junior": "Mid-Level",
    "Mid-Level": "Senior",
    "Senior": "Staff",
    "Staff": "Principal",
    "Principal": "Distinguished",
}


def next_seniority_level(level: str) -> str:
    """Best guess at the level after ``level`` on a typical tech ladder."""
    if level in NEXT_LEVEL:
        return NEXT_LEVEL[level]

    lowered = level.lower()
    if "junior" in lowered:
        return re.sub("junior", "Mid-Level", level, count=1, flags=re.IGNORECASE)
    if "staff" in lowered:
        return re.sub("staff", "Principal", level, count=1, flags=re.IGNORECASE)
    if "senior" in lowered:
        return re.sub("senior", "Staff", level, count=1, flags=re.IGNORECASE)
    if "principal" in lowered:
        return re.sub("principal", "Distinguished", level, count=1, flags=re.IGNORECASE)
    return f"Senior {level}"


def build_career_plan_prompt(
    role: str,
    level: str,
    company_ladder: Optional[str] = None,
    current_level_guidelines: Optional[str] = None,
    current_level: Optional[str] = None,
) -> str:
    lines = [
        "## TASK",
        "Generate a foundational career progression profile based on established "
        "industry career ladders for the role and level below.",
        "",
        "## INPUTS",
        f"1. **userRole**: {role}",
        f"2. **userLevel**: {level}",
    ]
    if company_ladder:
        lines.append(f"3. **Company Context**: {company_ladder}")
    if current_level_guidelines:
        lines += [
            "",
            "## REFERENCE CONTEXT",
            f"Guidelines for the current level ({current_level or level}):",
            "",
            current_level_guidelines,
            "",
            f"Expectations for {level} must build on and extend these.",
        ]
    lines += [
        "",
        "## OUTPUT STRUCTURE",
        "Markdown with only these headings and their bullet points:",
        "#### Impact & Ownership",
        "#### Craft & Expertise",
        "#### Communication & Collaboration",
        "#### Strategic Focus",
    ]
    return "\n".join(lines)


class CareerPlanInput(BaseModel):
    role: str
    level: str
    company_ladder: Optional[str] = None


class CareerPlanHandler(JobHandler):
    def __init__(
        self,
        generator: GenerationClient,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.generator = generator
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def operation_type(self) -> OperationType:
        return OperationType.CAREER_PLAN_GENERATION

    @property
    def estimated_duration(self) -> int:
        return 30

    def process(self, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        params = CareerPlanInput.model_validate(input_data)
        log = logger.bind(operation_id=context.operation_id, owner_id=context.owner_id)

        context.update_progress(10, "Starting career guidelines generation...")
        context.update_progress(
            20, f"Analyzing expectations for {params.level} {params.role}..."
        )
        current_plan = self.generator.generate(
            build_career_plan_prompt(params.role, params.level, params.company_ladder),
            temperature=0.7,
            max_tokens=1500,
            context={"operation_type": self.operation_type.value, "target_level": "current"},
        ).strip()

        context.update_progress(50, "Current level analysis complete...")
        next_level = next_seniority_level(params.level)
        context.update_progress(60, f"Analyzing next level expectations for {next_level}...")
        next_plan = self.generator.generate(
            build_career_plan_prompt(
                params.role,
                next_level,
                params.company_ladder,
                current_level_guidelines=current_plan,
                current_level=params.level,
            ),
            temperature=0.7,
            max_tokens=1500,
            context={"operation_type": self.operation_type.value, "target_level": "next"},
        ).strip()

        context.update_progress(90, "Finalizing career guidelines...")
        generated_at = self.clock()
        with context.open_repository() as repo:
            repo.update_profile(
                career_progression_plan=current_plan,
                next_level_expectations=next_plan,
                career_plan_generated_at=generated_at,
                career_plan_last_updated=generated_at,
            )

        context.update_progress(100, "Career guidelines generation complete!")
        log.info("career_plan_generated", level=params.level, next_level=next_level)
        return {
            "current_level_plan": current_plan,
            "next_level_expectations": next_plan,
            "next_level": next_level,
            "generated_at": generated_at.isoformat(),
        }
