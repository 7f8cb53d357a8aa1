"""
Unit tests for the rule evaluator and loop scoping.

Tests cover:
- Single-condition rules and all/any grouping of extra conditions
- Scope resolution: loop-sourced, loop-targeted and top-level rules
- Reference and scope errors (dangling source/target, cross-loop, pages)
- Iteration fan-out and broadcast across loop instances
- Broken rules degrading to non-matching results
"""

import pytest

from surveylogic.core.answers import AnswerContext, AnswerStore
from surveylogic.core.errors import (
    RuleReferenceError,
    ScopeViolationError,
    UnknownOperatorError,
)
from surveylogic.core.rules import (
    evaluate_rule,
    evaluate_rule_instances,
    resolve_scope,
    rule_iterations,
    targets_page,
)
from surveylogic.core.schema import ConditionalRule, RuleAction, TargetType


# --- Helpers ---


def make_rule(
    rule_id: str = "r1",
    source: str = "country",
    operator: str = "equals",
    compare_value=None,
    target: str = "visa",
    action: str = "hide",
    **extra,
) -> ConditionalRule:
    return ConditionalRule(
        id=rule_id,
        source_question_id=source,
        operator=operator,
        compare_value=compare_value,
        target_id=target,
        action=action,
        **extra,
    )


def make_context(survey, answers=None, loops=None, loop_counts=None) -> AnswerContext:
    store = AnswerStore(answers=answers or {}, loops=loops or {})
    return AnswerContext.build(store, survey, loop_counts)


# =============================================================
# Test: evaluate_rule
# =============================================================


class TestEvaluateRule:

    def test_matching_rule(self, household_survey):
        context = make_context(household_survey, {"country": "France"})
        result = evaluate_rule(make_rule(compare_value="France"), context)
        assert result.outcome is True
        assert result.action == RuleAction.HIDE
        assert result.target_type == TargetType.QUESTION
        assert result.target_id == "visa"
        assert result.loop_index is None
        assert result.error is None

    def test_non_matching_rule(self, household_survey):
        context = make_context(household_survey, {"country": "Spain"})
        assert evaluate_rule(make_rule(compare_value="France"), context).outcome is False

    def test_all_logic(self, household_survey):
        rule = make_rule(
            compare_value="France",
            conditions=[{"source_question_id": "income", "operator": "greater_than", "compare_value": 50000}],
        )
        rich = make_context(household_survey, {"country": "France", "income": 60000})
        poor = make_context(household_survey, {"country": "France", "income": 20000})
        assert evaluate_rule(rule, rich).outcome is True
        assert evaluate_rule(rule, poor).outcome is False

    def test_any_logic(self, household_survey):
        rule = make_rule(
            compare_value="France",
            logic="any",
            conditions=[{"source_question_id": "country", "operator": "equals", "compare_value": "Spain"}],
        )
        assert evaluate_rule(rule, make_context(household_survey, {"country": "Spain"})).outcome is True
        assert evaluate_rule(rule, make_context(household_survey, {"country": "Other"})).outcome is False

    def test_unknown_operator_carries_rule_id(self, household_survey):
        context = make_context(household_survey, {"country": "France"})
        with pytest.raises(UnknownOperatorError) as exc_info:
            evaluate_rule(make_rule(operator="sounds_like", compare_value="France"), context)
        assert exc_info.value.rule_id == "r1"

    def test_page_target(self, household_survey):
        rule = make_rule(compare_value="Other", target="p_details", target_type="page")
        context = make_context(household_survey, {"country": "Other"})
        result = evaluate_rule(rule, context)
        assert result.target_type == TargetType.PAGE
        assert result.outcome is True


# =============================================================
# Test: Scope resolution
# =============================================================


class TestResolveScope:

    def test_top_level_rule(self, household_survey):
        scope = resolve_scope(make_rule(compare_value="France"), make_context(household_survey))
        assert scope.source_loop is None
        assert scope.target_loop is None

    def test_loop_rule_same_loop(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5, target="school")
        scope = resolve_scope(rule, make_context(household_survey))
        assert scope.source_loop == "children"
        assert scope.target_loop == "children"

    def test_top_level_source_targeting_subquestion(self, household_survey):
        rule = make_rule(compare_value="France", target="school")
        scope = resolve_scope(rule, make_context(household_survey))
        assert scope.source_loop is None
        assert scope.target_loop == "children"

    def test_loop_source_targeting_question_on_same_page(self, household_survey):
        rule = make_rule(source="age", operator="greater_than", compare_value=17, target="visa")
        scope = resolve_scope(rule, make_context(household_survey))
        assert scope.source_loop == "children"
        assert scope.target_loop is None

    def test_dangling_source(self, household_survey):
        with pytest.raises(RuleReferenceError):
            resolve_scope(make_rule(source="deleted_question"), make_context(household_survey))

    def test_dangling_target(self, household_survey):
        with pytest.raises(RuleReferenceError):
            resolve_scope(make_rule(target="deleted_question"), make_context(household_survey))

    def test_other_survey(self, household_survey):
        rule = make_rule(compare_value="France", survey_id="another_survey")
        with pytest.raises(RuleReferenceError):
            resolve_scope(rule, make_context(household_survey))

    def test_loop_rule_targeting_page_is_violation(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5,
                         target="p_profile", target_type="page")
        with pytest.raises(ScopeViolationError):
            resolve_scope(rule, make_context(household_survey))

    def test_loop_rule_targeting_other_page(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5, target="income")
        with pytest.raises(ScopeViolationError):
            resolve_scope(rule, make_context(household_survey))

    def test_declared_scope_must_match_source(self, household_survey):
        rule = make_rule(compare_value="France", target="school", loop_scope="children")
        with pytest.raises(ScopeViolationError):
            resolve_scope(rule, make_context(household_survey))

    def test_cross_loop_target(self, household_survey):
        data = household_survey.model_dump()
        data["pages"][1]["questions"].append({
            "id": "pets",
            "type": "loop_group",
            "subquestions": [{"id": "pet_name", "type": "short_text"}],
        })
        survey = type(household_survey).model_validate(data)
        rule = make_rule(source="age", operator="less_than", compare_value=5, target="pet_name")
        with pytest.raises(ScopeViolationError):
            resolve_scope(rule, make_context(survey))


# =============================================================
# Test: Loop fan-out
# =============================================================


class TestLoopFanOut:

    def _children_context(self, survey, **kwargs):
        return make_context(
            survey,
            loops={"children": {0: {"age": 3}, 1: {"age": 8}, 2: {}}},
            **kwargs,
        )

    def test_one_result_per_iteration(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5, target="school")
        results = evaluate_rule_instances(rule, self._children_context(household_survey))
        assert [(r.loop_index, r.outcome) for r in results] == [(0, True), (1, False), (2, False)]

    def test_iteration_reads_only_its_own_answer(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5, target="school")
        context = make_context(household_survey, loops={"children": {0: {"age": 3}, 1: {"age": 8}, 2: {"age": 1}}})
        outcomes = [r.outcome for r in evaluate_rule_instances(rule, context)]
        assert outcomes == [True, False, True]

    def test_top_level_rule_broadcasts_to_iterations(self, household_survey):
        rule = make_rule(compare_value="France", target="school")
        context = self._children_context(household_survey, answers={"country": "France"})
        results = evaluate_rule_instances(rule, context)
        assert [(r.loop_index, r.outcome) for r in results] == [(0, True), (1, True), (2, True)]

    def test_loop_source_with_top_level_target(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5, target="visa")
        results = evaluate_rule_instances(rule, self._children_context(household_survey))
        assert all(r.loop_index is None for r in results)
        assert [r.outcome for r in results] == [True, False, False]

    def test_loop_source_without_iterations_still_evaluates_once(self, household_survey):
        rule = make_rule(source="age", operator="is_not_answered", target="visa", action="show")
        assert rule_iterations(rule, make_context(household_survey)) == [None]
        results = evaluate_rule_instances(rule, make_context(household_survey))
        assert [(r.loop_index, r.outcome) for r in results] == [(None, True)]

    def test_no_iterations_no_results_for_loop_target(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5, target="school")
        assert evaluate_rule_instances(rule, make_context(household_survey)) == []

    def test_runtime_loop_count(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5, target="school")
        context = self._children_context(household_survey, loop_counts={"children": 4})
        assert len(evaluate_rule_instances(rule, context)) == 4


# =============================================================
# Test: Broken rules
# =============================================================


class TestBrokenRules:
    """A broken rule never raises out of evaluate_rule_instances."""

    def test_dangling_source_is_non_matching(self, household_survey, caplog):
        rule = make_rule(source="deleted_question", operator="is_not_answered", action="show")
        results = evaluate_rule_instances(rule, make_context(household_survey))
        assert len(results) == 1
        assert results[0].outcome is False
        assert "dangling_reference" in caplog.text
        assert results[0].error

    def test_unknown_operator_is_non_matching(self, household_survey):
        rule = make_rule(operator="sounds_like", compare_value="France")
        results = evaluate_rule_instances(rule, make_context(household_survey, {"country": "France"}))
        assert [r.outcome for r in results] == [False]

    def test_scope_violation_fails_every_target_iteration(self, household_survey):
        rule = make_rule(source="age", operator="less_than", compare_value=5,
                         target="p_profile", target_type="page", action="show")
        results = evaluate_rule_instances(rule, make_context(household_survey))
        assert len(results) == 1
        assert results[0].outcome is False

    def test_failed_subquestion_target_covers_all_iterations(self, household_survey):
        rule = make_rule(source="deleted_question", target="school", action="show")
        context = make_context(household_survey, loops={"children": {0: {}, 1: {}}})
        results = evaluate_rule_instances(rule, context)
        assert [(r.loop_index, r.outcome) for r in results] == [(0, False), (1, False)]


class TestTargetsPage:

    def test_question_and_subquestion_targets(self, household_survey):
        context = make_context(household_survey)
        page = household_survey.get_page("p_profile")
        assert targets_page(make_rule(target="visa"), context, page) is True
        assert targets_page(make_rule(target="school"), context, page) is True
        assert targets_page(make_rule(target="income"), context, page) is False

    def test_page_target(self, household_survey):
        context = make_context(household_survey)
        page = household_survey.get_page("p_details")
        rule = make_rule(target="p_details", target_type="page")
        assert targets_page(rule, context, page) is True


class TestAnyLogicWithBrokenCondition:
    """An unknown operator fails the rule even when another condition already matched."""

    def _rule(self):
        return make_rule(
            compare_value="France",
            action="show",
            logic="any",
            conditions=[{"source_question_id": "country", "operator": "sounds_like", "compare_value": "x"}],
        )

    def test_evaluate_rule_raises(self, household_survey):
        context = make_context(household_survey, {"country": "France"})
        with pytest.raises(UnknownOperatorError):
            evaluate_rule(self._rule(), context)

    def test_instances_are_non_matching(self, household_survey):
        context = make_context(household_survey, {"country": "France"})
        [result] = evaluate_rule_instances(self._rule(), context)
        assert result.outcome is False
        assert result.error is not None
