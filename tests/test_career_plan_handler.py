"""Tests for career plan generation."""

import pytest

from advance_weekly.db.operation_store import OperationStore
from advance_weekly.schemas.operations import OperationStatus, OperationType
from advance_weekly.worker.dispatcher import Dispatcher, HandlerRegistry
from advance_weekly.worker.handlers.career_plan import (
    CareerPlanHandler,
    build_career_plan_prompt,
    next_seniority_level,
)

from tests.conftest import FIXED_NOW, FakeGenerator


class SequencedGenerator(FakeGenerator):
    """Answers each call with the next canned response."""

    def __init__(self, *responses):
        super().__init__()
        self.responses = list(responses)

    def generate(self, prompt, *, temperature=0.7, max_tokens=1500, context=None):
        self.prompts.append(prompt)
        return self.responses.pop(0)


def _queue(session_factory, owner_id, input_data):
    db = session_factory()
    try:
        return OperationStore(db).create(
            owner_id, OperationType.CAREER_PLAN_GENERATION, input_data
        ).id
    finally:
        db.close()


def test_generates_and_saves_plan(session_factory, make_user, repo_for):
    owner_id = make_user()
    generator = SequencedGenerator("  current plan \n", "next plan")
    handler = CareerPlanHandler(generator, clock=lambda: FIXED_NOW)
    operation_id = _queue(
        session_factory,
        owner_id,
        {"role": "Software Engineer", "level": "Senior Software Engineer"},
    )

    final = Dispatcher(HandlerRegistry([handler]), session_factory).dispatch(operation_id)

    assert final["status"] == OperationStatus.COMPLETED.value
    assert final["result_data"] == {
        "current_level_plan": "current plan",
        "next_level_expectations": "next plan",
        "next_level": "Staff Software Engineer",
        "generated_at": FIXED_NOW.isoformat(),
    }

    first, second = generator.prompts
    assert "**userLevel**: Senior Software Engineer" in first
    assert "REFERENCE CONTEXT" not in first
    assert "**userLevel**: Staff Software Engineer" in second
    assert "current plan" in second

    profile = repo_for(owner_id).get_profile()
    assert profile["career_progression_plan"] == "current plan"
    assert profile["next_level_expectations"] == "next plan"
    assert profile["career_plan_generated_at"] is not None


def test_missing_input_fails(session_factory, make_user):
    owner_id = make_user()
    handler = CareerPlanHandler(FakeGenerator())

    final = Dispatcher(HandlerRegistry([handler]), session_factory).dispatch(
        _queue(session_factory, owner_id, {"role": "Designer"})
    )

    assert final["status"] == OperationStatus.FAILED.value
    assert "level" in final["error_message"]


def test_unknown_owner_fails(session_factory):
    handler = CareerPlanHandler(FakeGenerator())

    final = Dispatcher(HandlerRegistry([handler]), session_factory).dispatch(
        _queue(session_factory, "ghost", {"role": "Engineer", "level": "Senior"})
    )

    assert final["status"] == OperationStatus.FAILED.value
    assert final["error_message"] == "Profile not found or access denied"


@pytest.mark.parametrize(
    "level,expected",
    [
        ("Software Engineer", "Senior Software Engineer"),
        ("Senior", "Staff"),
        ("Junior Data Scientist", "Mid-Level Data Scientist"),
        ("Staff Data Scientist", "Principal Data Scientist"),
        ("Senior Data Scientist", "Staff Data Scientist"),
        ("Principal Architect", "Distinguished Architect"),
        ("Analyst", "Senior Analyst"),
    ],
)
def test_next_seniority_level(level, expected):
    assert next_seniority_level(level) == expected


def test_prompt_includes_company_ladder():
    prompt = build_career_plan_prompt("Engineer", "Senior", "L5 means autonomy")
    assert "3. **Company Context**: L5 means autonomy" in prompt
