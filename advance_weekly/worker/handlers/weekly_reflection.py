"""
Weekly reflection generation.

Builds a draft reflection for one ISO week by:
1. Loading the owner's profile (and reusing an existing reflection)
2. Collecting integration data for the week
3. Storing the consolidated data
4. Retrieving the previous week's reflection and recent insights
5. Generating the reflection text
6. Saving it as the period's artifact
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
from pydantic import BaseModel, Field

from ...db.repository import ScopedDataRepository
from ...errors import HandlerError
from ...integrations.base import GenerationClient, IntegrationSource
from ...periods import (
    current_period,
    iso_period_number,
    period_bounds,
    period_start,
    previous_period,
)
from ...schemas.operations import OperationType
from .base import JobHandler

logger = structlog.get_logger()

_FENCED_MARKDOWN = re.compile(r"^```markdown\s*\n(.*?)\n```$", re.DOTALL)
_FENCED_GENERIC = re.compile(r"^```\s*\n(.*?)\n```$", re.DOTALL)

REFLECTION_TEMPLATE = (
    "## Done\n\n{content}\n\n"
    "## Next\n\n- Continue with current priorities\n\n"
    "## Notes\n\n*Generated reflection - please review and edit as needed*"
)

# Characters of last week's reflection quoted into the prompt
PREVIOUS_REFLECTION_EXCERPT = 500


class WeeklyReflectionInput(BaseModel):
    owner_id: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    include_previous_context: bool = True
    include_integration_types: List[str] = Field(default_factory=list)
    manual: bool = False


def parse_reflection_response(response: str) -> str:
    """Normalise generated text into the Done / Next / Notes template.

    Strips a surrounding code fence; text lacking the Done or Next heading is
    wrapped into the template rather than rejected.
    """
    content = response.strip()

    match = _FENCED_MARKDOWN.match(content)
    if match:
        content = match.group(1).strip()

    match = _FENCED_GENERIC.match(content)
    if match and "## Done" in match.group(1):
        content = match.group(1).strip()

    if "## Done" not in content or "## Next" not in content:
        return REFLECTION_TEMPLATE.format(content=content)
    return content


def build_reflection_prompt(
    profile: Dict[str, Any],
    summaries: Dict[str, str],
    previous_reflection: Optional[str] = None,
    recent_insights: Optional[str] = None,
) -> str:
    seniority = profile.get("seniority_level") or "professional"
    title = profile.get("job_title") or "team member"
    lines = [
        f"Generate a weekly reflection for a {seniority} {title}.",
        "",
        "CONSOLIDATED WEEKLY DATA:",
    ]
    for integration_type, summary in summaries.items():
        lines.append(f"- {integration_type}: {summary}")

    if previous_reflection:
        lines += [
            "",
            "PREVIOUS WEEK'S REFLECTION (for continuity):",
            previous_reflection[:PREVIOUS_REFLECTION_EXCERPT] + "...",
        ]
    if recent_insights:
        lines += ["", "RECENT PERFORMANCE INSIGHTS:", recent_insights]

    lines += [
        "",
        "REQUIREMENTS:",
        "1. Create a structured reflection in the format: ## Done, ## Next, ## Notes",
        '2. Under "Done" - List 3-5 specific accomplishments based on the actual activities',
        '3. Under "Next" - Identify 2-3 concrete next steps based on current priorities',
        '4. Under "Notes" - Include observations about challenges, learnings, or important context',
        "5. Write in first person, using action verbs",
        "6. Maintain continuity with previous week if context provided",
        "7. Focus on impact and outcomes, not just activities",
        "",
        "FORMAT:",
        "Return as markdown text with clear sections.",
    ]
    return "\n".join(lines)


class WeeklyReflectionHandler(JobHandler):
    """Generates the owner's reflection draft for one ISO week."""

    def __init__(
        self,
        generator: GenerationClient,
        sources: Iterable[IntegrationSource] = (),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.generator = generator
        self.sources = {source.integration_type: source for source in sources}
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def operation_type(self) -> OperationType:
        return OperationType.WEEKLY_REFLECTION

    @property
    def estimated_duration(self) -> int:
        return 180

    def process(self, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        year: Optional[int] = None
        period: Optional[int] = None
        log = logger.bind(operation_id=context.operation_id, owner_id=context.owner_id)

        try:
            params = WeeklyReflectionInput.model_validate(input_data)
            start = params.period_start or period_start(*current_period(self.clock()))
            year, period = iso_period_number(start)
            log = log.bind(year=year, period=period)

            if params.owner_id and params.owner_id != context.owner_id:
                raise HandlerError("Job owner does not match the operation owner")

            context.update_progress(5, "Loading user profile")
            with context.open_repository() as repo:
                return self._generate(repo, params, year, period, context, log)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            log.error("weekly_reflection_failed", error=message)
            return {"status": "error", "error": message, "year": year, "period": period}

    def _generate(
        self,
        repo: ScopedDataRepository,
        params: WeeklyReflectionInput,
        year: int,
        period: int,
        context,
        log,
    ) -> Dict[str, Any]:
        profile = repo.get_profile()
        if not profile:
            raise HandlerError("User profile not found")

        existing = repo.get_period_artifact(year, period)
        if existing:
            log.info("weekly_reflection_reused", artifact_id=existing["id"])
            return {
                "status": "draft",
                "artifact_id": existing["id"],
                "year": year,
                "period": period,
                "content": existing["content"],
                "consolidation_id": existing["consolidation_id"],
                "reused": True,
            }

        week_start, week_end = period_bounds(year, period)

        context.update_progress(20, "Fetching integration data")
        requested = params.include_integration_types or profile.get(
            "reflection_include_integrations"
        )
        integration_data = self._collect_integration_data(
            repo, requested, week_start, week_end, log
        )
        if not integration_data:
            raise HandlerError("No integration data available for this week")

        context.update_progress(40, "Consolidating weekly activities")
        consolidation_ids = []
        summaries = {}
        for integration_type, data in integration_data.items():
            summaries[integration_type] = data.get("summary") or ""
            consolidation = repo.create_integration_consolidation(
                integration_type=integration_type,
                year=year,
                period=period,
                week_start=week_start,
                week_end=week_end,
                raw_data=data,
                consolidated_summary=summaries[integration_type],
            )
            consolidation_ids.append(consolidation["id"])
        consolidation_id = consolidation_ids[0]

        previous_reflection = None
        recent_insights = None
        if params.include_previous_context:
            context.update_progress(55, "Retrieving previous insights")
            previous = repo.get_period_artifact(*previous_period(year, period))
            previous_reflection = previous["content"] if previous else None
            assessments = repo.list_cycle_artifacts()
            recent_insights = assessments[0]["generated_draft"] if assessments else None

        context.update_progress(70, "Generating reflection with AI")
        prompt = build_reflection_prompt(
            profile, summaries, previous_reflection, recent_insights
        )
        content = parse_reflection_response(
            self.generator.generate(
                prompt,
                temperature=0.7,
                max_tokens=1500,
                context={
                    "type": "weekly_reflection_automation",
                    "owner_id": context.owner_id,
                },
            )
        )

        context.update_progress(90, "Saving reflection draft")
        artifact = repo.create_or_update_period_artifact(
            year,
            period,
            week_start,
            week_end,
            content,
            source_integration_type=next(iter(integration_data)),
            consolidation_id=consolidation_id,
            generated_from_consolidation=True,
            ai_suggestions={
                "generated_automatically": not params.manual,
                "generated_at": self.clock().isoformat(),
                "consolidation_id": consolidation_id,
                "status": "draft",
            },
        )
        for integration_type in integration_data:
            repo.mark_integration_synced(integration_type, self.clock())

        log.info("weekly_reflection_generated", artifact_id=artifact["id"])
        return {
            "status": "draft",
            "artifact_id": artifact["id"],
            "year": year,
            "period": period,
            "content": content,
            "consolidation_id": consolidation_id,
        }

    def _collect_integration_data(
        self,
        repo: ScopedDataRepository,
        requested: Optional[List[str]],
        week_start: date,
        week_end: date,
        log,
    ) -> Dict[str, Dict[str, Any]]:
        """Data per integration type; one failing source does not stop the others."""
        collected: Dict[str, Dict[str, Any]] = {}
        for integration in repo.list_integrations(active_only=True):
            integration_type = integration["type"]
            if requested and integration_type not in requested:
                continue
            source = self.sources.get(integration_type)
            if source is None:
                log.debug("integration_source_missing", integration_type=integration_type)
                continue
            credentials = repo.get_integration_credentials(integration_type)
            if not credentials:
                continue
            try:
                data = source.fetch_weekly_data(credentials, week_start, week_end)
            except Exception as e:
                log.warning(
                    "integration_fetch_failed",
                    integration_type=integration_type,
                    error=str(e),
                )
                continue
            if data:
                collected[integration_type] = data
        return collected
