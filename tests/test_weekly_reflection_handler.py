"""Tests for weekly reflection generation."""

from datetime import date

import pytest

from advance_weekly.db.operation_store import OperationStore
from advance_weekly.schemas.operations import OperationStatus, OperationType
from advance_weekly.worker.dispatcher import Dispatcher, HandlerRegistry, JobContext
from advance_weekly.worker.handlers.weekly_reflection import (
    REFLECTION_TEMPLATE,
    WeeklyReflectionHandler,
    build_reflection_prompt,
    parse_reflection_response,
)

from tests.conftest import FIXED_NOW, REFLECTION, FakeGenerator, FakeSource


@pytest.fixture
def user(make_user, connect_calendar):
    owner_id = make_user()
    connect_calendar(owner_id)
    return owner_id


def _queue(session_factory, operation_owner, **overrides):
    input_data = {
        "owner_id": operation_owner,
        "period_start": "2025-07-21",
        "period_end": "2025-07-25",
        "include_previous_context": True,
        "include_integration_types": [],
        "manual": True,
    }
    input_data.update(overrides)
    db = session_factory()
    try:
        return OperationStore(db).create(
            operation_owner, OperationType.WEEKLY_REFLECTION, input_data
        ).id
    finally:
        db.close()


def _run(session_factory, handler, operation_id):
    return Dispatcher(HandlerRegistry([handler]), session_factory).dispatch(operation_id)


def test_generates_and_stores_draft(session_factory, user, repo_for, week30):
    generator = FakeGenerator()
    source = FakeSource()
    handler = WeeklyReflectionHandler(generator, [source], clock=lambda: FIXED_NOW)

    final = _run(session_factory, handler, _queue(session_factory, user))

    assert final["status"] == OperationStatus.COMPLETED.value
    result = final["result_data"]
    assert result["status"] == "draft"
    assert (result["year"], result["period"]) == (2025, 30)
    assert result["content"] == REFLECTION

    assert source.calls == [(f"token-{user}", *week30)]
    assert "This week included 2 meetings." in generator.prompts[0]

    repo = repo_for(user)
    artifact = repo.get_period_artifact(2025, 30)
    assert artifact["id"] == result["artifact_id"]
    assert artifact["content"] == REFLECTION
    assert artifact["start_date"] == "2025-07-21"
    assert artifact["end_date"] == "2025-07-25"
    assert artifact["source_integration_type"] == "google_calendar"
    assert artifact["generated_from_consolidation"] is True
    assert artifact["consolidation_id"] == result["consolidation_id"]
    assert artifact["ai_suggestions"]["generated_automatically"] is False

    [consolidation] = repo.list_integration_consolidations()
    assert consolidation["id"] == result["consolidation_id"]
    assert consolidation["raw_data"]["total_meetings"] == 2
    assert consolidation["processing_status"] == "completed"

    [integration] = repo.list_integrations()
    assert integration["last_sync_at"] is not None


def test_fails_without_integration_data(session_factory, make_user, repo_for):
    owner_id = make_user()
    handler = WeeklyReflectionHandler(FakeGenerator(), [FakeSource()])

    final = _run(session_factory, handler, _queue(session_factory, owner_id))

    assert final["status"] == OperationStatus.FAILED.value
    assert final["error_message"] == "No integration data available for this week"
    assert repo_for(owner_id).get_period_artifact(2025, 30) is None


def test_reuses_existing_artifact(session_factory, user, repo_for):
    existing = repo_for(user).create_or_update_period_artifact(
        2025, 30, None, None, "Written by hand"
    )
    generator = FakeGenerator()
    source = FakeSource()
    handler = WeeklyReflectionHandler(generator, [source])

    final = _run(session_factory, handler, _queue(session_factory, user))

    assert final["status"] == OperationStatus.COMPLETED.value
    assert final["result_data"]["artifact_id"] == existing["id"]
    assert final["result_data"]["reused"] is True
    assert final["result_data"]["content"] == "Written by hand"
    assert generator.prompts == []
    assert source.calls == []


def test_unknown_owner_fails(session_factory):
    handler = WeeklyReflectionHandler(FakeGenerator(), [FakeSource()])

    final = _run(session_factory, handler, _queue(session_factory, "ghost"))

    assert final["status"] == OperationStatus.FAILED.value
    assert final["error_message"] == "User profile not found"


def test_owner_mismatch_fails(session_factory, user, make_user):
    other = make_user()
    handler = WeeklyReflectionHandler(FakeGenerator(), [FakeSource()])
    operation_id = _queue(session_factory, user, owner_id=other)

    final = _run(session_factory, handler, operation_id)

    assert final["status"] == OperationStatus.FAILED.value
    assert final["error_message"] == "Job owner does not match the operation owner"


def test_one_failing_source_does_not_stop_others(
    session_factory, user, connect_calendar, repo_for
):
    connect_calendar(user, "github")
    broken = FakeSource(error=RuntimeError("calendar down"))
    github = FakeSource("github", data={"summary": "Merged 4 pull requests."})
    generator = FakeGenerator()
    handler = WeeklyReflectionHandler(generator, [broken, github])

    final = _run(session_factory, handler, _queue(session_factory, user))

    assert final["status"] == OperationStatus.COMPLETED.value
    assert len(broken.calls) == 1
    assert "- github: Merged 4 pull requests." in generator.prompts[0]
    assert "google_calendar" not in generator.prompts[0]
    artifact = repo_for(user).get_period_artifact(2025, 30)
    assert artifact["source_integration_type"] == "github"


def test_requested_types_limit_sources(session_factory, user, connect_calendar):
    connect_calendar(user, "github")
    calendar = FakeSource()
    github = FakeSource("github", data={"summary": "Reviewed code."})
    handler = WeeklyReflectionHandler(FakeGenerator(), [calendar, github])

    final = _run(
        session_factory,
        handler,
        _queue(session_factory, user, include_integration_types=["github"]),
    )

    assert final["status"] == OperationStatus.COMPLETED.value
    assert calendar.calls == []
    assert len(github.calls) == 1


def test_generator_error_fails_operation(session_factory, user, repo_for):
    handler = WeeklyReflectionHandler(
        FakeGenerator(error=RuntimeError("proxy unavailable")), [FakeSource()]
    )

    final = _run(session_factory, handler, _queue(session_factory, user))

    assert final["status"] == OperationStatus.FAILED.value
    assert final["error_message"] == "proxy unavailable"
    assert repo_for(user).get_period_artifact(2025, 30) is None


def test_previous_context_in_prompt(session_factory, user, repo_for):
    repo = repo_for(user)
    repo.create_or_update_period_artifact(2025, 29, None, None, "Finished the migration")
    repo.create_cycle_artifact(
        "H1 2025", date(2025, 1, 1), date(2025, 6, 30), "Strong ownership of releases"
    )
    generator = FakeGenerator()
    handler = WeeklyReflectionHandler(generator, [FakeSource()])

    _run(session_factory, handler, _queue(session_factory, user))

    prompt = generator.prompts[0]
    assert "PREVIOUS WEEK'S REFLECTION" in prompt
    assert "Finished the migration" in prompt
    assert "RECENT PERFORMANCE INSIGHTS:\nStrong ownership of releases" in prompt


def test_previous_context_can_be_skipped(session_factory, user, repo_for):
    repo_for(user).create_or_update_period_artifact(
        2025, 29, None, None, "Finished the migration"
    )
    generator = FakeGenerator()
    handler = WeeklyReflectionHandler(generator, [FakeSource()])

    _run(
        session_factory,
        handler,
        _queue(session_factory, user, include_previous_context=False),
    )

    assert "Finished the migration" not in generator.prompts[0]


def test_progress_sequence(session_factory, user):
    reported = []

    def record(percent, message=None):
        reported.append(percent)
        return True

    context = JobContext(
        owner_id=user,
        operation_id="op-1",
        session_factory=session_factory,
        progress_reporter=record,
    )
    handler = WeeklyReflectionHandler(FakeGenerator(), [FakeSource()])

    result = handler.process({"period_start": "2025-07-21"}, context)

    assert result["status"] == "draft"
    assert reported == [5, 20, 40, 55, 70, 90]


def test_period_defaults_to_current_week(session_factory, user):
    context = JobContext(
        owner_id=user,
        operation_id="op-2",
        session_factory=session_factory,
        progress_reporter=lambda percent, message=None: True,
    )
    handler = WeeklyReflectionHandler(
        FakeGenerator(), [FakeSource()], clock=lambda: FIXED_NOW
    )

    result = handler.process({}, context)

    assert (result["year"], result["period"]) == (2025, 30)


def test_malformed_input_returns_error_result(session_factory, user):
    reported = []
    context = JobContext(
        owner_id=user,
        operation_id="op-3",
        session_factory=session_factory,
        progress_reporter=lambda percent, message=None: reported.append(percent) or True,
    )
    generator = FakeGenerator()
    handler = WeeklyReflectionHandler(generator, [FakeSource()])

    result = handler.process({"period_start": "last tuesday"}, context)

    assert result["status"] == "error"
    assert "period_start" in result["error"]
    assert (result["year"], result["period"]) == (None, None)
    assert reported == []
    assert generator.prompts == []


class TestParseReflectionResponse:
    def test_structured_text_kept(self):
        assert parse_reflection_response(f"  {REFLECTION}\n") == REFLECTION

    def test_markdown_fence_stripped(self):
        assert parse_reflection_response(f"```markdown\n{REFLECTION}\n```") == REFLECTION

    def test_generic_fence_stripped(self):
        assert parse_reflection_response(f"```\n{REFLECTION}\n```") == REFLECTION

    def test_unstructured_text_wrapped(self):
        parsed = parse_reflection_response("Did a lot of things")
        assert parsed == REFLECTION_TEMPLATE.format(content="Did a lot of things")
        assert parsed.startswith("## Done\n\nDid a lot of things")


def test_prompt_mentions_role_and_truncates_previous():
    prompt = build_reflection_prompt(
        {"seniority_level": "Staff", "job_title": "Engineer"},
        {"google_calendar": "Five meetings."},
        previous_reflection="x" * 800,
    )
    assert prompt.startswith("Generate a weekly reflection for a Staff Engineer.")
    assert "- google_calendar: Five meetings." in prompt
    assert "x" * 500 + "..." in prompt
    assert "x" * 501 not in prompt
    assert "RECENT PERFORMANCE INSIGHTS" not in prompt
