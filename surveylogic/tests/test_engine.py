"""
Tests for the LangGraph page evaluation pass.

Tests cover:
- Default visibility with no rules
- Hide precedence and fail-closed show rules end to end
- Loop iterations evaluated independently
- Deterministic, byte-identical output for the same snapshot
- Page auto-hide
- Malformed and dangling rules isolated from the rest
- Unknown pages
- Graph routing and concurrent passes
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from surveylogic.core.answers import AnswerStore
from surveylogic.core.errors import PageNotFoundError
from surveylogic.engine.graph import (
    arun_page_pass,
    compile_graph,
    create_pass_input,
    evaluate_page,
    get_compiled_graph,
    route_after_context,
    run_page_pass,
)


# --- Helpers ---


def household_answers(**answers) -> AnswerStore:
    """Answers for the household survey, children ages 3 / 8 / unanswered."""
    return AnswerStore(
        answers={"country": "France", "has_children": True, **answers},
        loops={"children": {0: {"age": 3}, 1: {"age": 8}, 2: {"child_name": "Lea"}}},
    )


# =============================================================
# Test: Defaults and precedence
# =============================================================


class TestPagePass:

    def test_no_rules_everything_visible(self, household_survey):
        visibility = evaluate_page(household_survey, [], household_answers(), "p_profile")
        assert all(visibility.questions.values())
        assert visibility.is_page_visible("p_profile") is True
        assert visibility.loop_questions["school"] == {0: True, 1: True, 2: True}

    def test_household_rules(self, household_survey, household_rules):
        visibility = evaluate_page(household_survey, household_rules, household_answers(), "p_profile")
        assert visibility.is_visible("visa") is False
        assert visibility.is_visible("country") is True
        assert visibility.is_visible("children") is True

    def test_hide_beats_show(self, household_survey, household_rules):
        show_visa = {
            "id": "show_visa_for_france",
            "source_question_id": "country",
            "operator": "equals",
            "compare_value": "France",
            "target_id": "visa",
            "action": "show",
        }
        rules = [*household_rules, show_visa]
        visibility = evaluate_page(household_survey, rules, household_answers(), "p_profile")
        assert visibility.is_visible("visa") is False

    def test_show_rule_is_fail_closed(self, household_survey, household_rules):
        """The children group stays hidden until has_children is answered."""
        answers = AnswerStore(answers={"country": "Spain"})
        visibility = evaluate_page(household_survey, household_rules, answers, "p_profile")
        assert visibility.is_visible("children") is False
        assert visibility.is_visible("visa") is True

    def test_raw_dict_answers(self, household_survey, household_rules):
        answers = {"answers": {"country": "Spain", "has_children": "no"}}
        visibility = evaluate_page(household_survey, household_rules, answers, "p_profile")
        assert visibility.is_visible("children") is False
        assert visibility.is_visible("visa") is True


# =============================================================
# Test: Loop groups
# =============================================================


class TestLoopIterations:

    def test_each_iteration_uses_its_own_age(self, household_survey, household_rules):
        visibility = evaluate_page(household_survey, household_rules, household_answers(), "p_profile")
        assert visibility.loop_questions["school"] == {0: False, 1: True, 2: True}

    def test_changing_one_iteration_leaves_others(self, household_survey, household_rules):
        answers = household_answers()
        answers.loops["children"][2]["age"] = 2
        visibility = evaluate_page(household_survey, household_rules, answers, "p_profile")
        assert visibility.loop_questions["school"] == {0: False, 1: True, 2: False}

    def test_runtime_loop_count(self, household_survey, household_rules):
        visibility = evaluate_page(
            household_survey, household_rules, household_answers(), "p_profile",
            loop_counts={"children": 4},
        )
        assert visibility.loop_questions["school"] == {0: False, 1: True, 2: True, 3: True}

    def test_results_carry_loop_index(self, household_survey, household_rules):
        outcome = run_page_pass(household_survey, household_rules, household_answers(), "p_profile")
        school = [r for r in outcome.results if r.target_id == "school"]
        assert [(r.loop_index, r.outcome) for r in school] == [(0, True), (1, False), (2, False)]


# =============================================================
# Test: Determinism
# =============================================================


class TestDeterminism:

    def test_same_snapshot_same_bytes(self, household_survey, household_rules):
        outputs = {
            run_page_pass(household_survey, household_rules, household_answers(), "p_profile").model_dump_json()
            for _ in range(5)
        }
        assert len(outputs) == 1

    def test_rule_order_does_not_matter(self, household_survey, household_rules):
        forward = evaluate_page(household_survey, household_rules, household_answers(), "p_profile")
        backward = evaluate_page(household_survey, household_rules[::-1], household_answers(), "p_profile")
        assert forward == backward

    def test_concurrent_passes(self, household_survey, household_rules):
        def _run(page_id):
            return evaluate_page(household_survey, household_rules, household_answers(), page_id)

        pages = ["p_profile", "p_details", "p_extra"] * 4
        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(_run, pages))
        expected = {page_id: _run(page_id) for page_id in set(pages)}
        for page_id, visibility in zip(pages, results):
            assert visibility == expected[page_id]


# =============================================================
# Test: Page auto-hide
# =============================================================


class TestPageAutoHide:

    def _rules(self, hide_b: bool):
        rules = [{
            "id": "hide_a",
            "source_question_id": "country",
            "operator": "is_answered",
            "target_id": "extra_a",
            "action": "hide",
        }]
        if hide_b:
            rules.append({
                "id": "hide_b",
                "source_question_id": "country",
                "operator": "is_answered",
                "target_id": "extra_b",
                "action": "hide",
            })
        return rules

    def test_page_hidden_when_all_questions_hidden(self, household_survey):
        visibility = evaluate_page(household_survey, self._rules(True), household_answers(), "p_extra")
        assert visibility.is_page_visible("p_extra") is False

    def test_page_visible_with_one_question_left(self, household_survey):
        visibility = evaluate_page(household_survey, self._rules(False), household_answers(), "p_extra")
        assert visibility.is_page_visible("p_extra") is True

    def test_page_rule(self, household_survey):
        rule = {
            "id": "details_only_outside_france",
            "source_question_id": "country",
            "operator": "equals",
            "compare_value": "France",
            "target_type": "page",
            "target_id": "p_details",
            "action": "hide",
        }
        visibility = evaluate_page(household_survey, [rule], household_answers(), "p_details")
        assert visibility.is_page_visible("p_details") is False


# =============================================================
# Test: Rule isolation
# =============================================================


class TestRuleIsolation:

    def test_malformed_rule_is_skipped(self, household_survey, household_rules, caplog):
        broken = {"id": "broken", "source_question_id": "country", "target_id": "visa"}
        outcome = run_page_pass(household_survey, [broken, *household_rules], household_answers(), "p_profile")
        assert outcome.skipped_rules == ["broken"]
        assert outcome.visibility.is_visible("visa") is False
        assert outcome.visibility.is_visible("children") is True
        assert "Skipping malformed rule broken" in caplog.text

    def test_malformed_show_rule_keeps_target_hidden(self, household_survey):
        broken = {"source_question_id": "country", "operator": 42, "target_id": "notes", "action": "show"}
        outcome = run_page_pass(household_survey, [broken], household_answers(), "p_details")
        assert outcome.skipped_rules == ["#0"]
        assert outcome.visibility.is_visible("notes") is False
        [result] = outcome.results
        assert result.outcome is False
        assert result.error.startswith("malformed rule")

    def test_unsalvageable_rule(self, household_survey):
        outcome = run_page_pass(household_survey, ["not a rule"], household_answers(), "p_profile")
        assert outcome.skipped_rules == ["#0"]
        assert outcome.results == []
        assert all(outcome.visibility.questions.values())

    def test_dangling_source_does_not_abort_pass(self, household_survey, household_rules):
        dangling = {
            "id": "dangling",
            "source_question_id": "deleted_question",
            "operator": "is_answered",
            "target_id": "country",
            "action": "show",
        }
        outcome = run_page_pass(household_survey, [dangling, *household_rules], household_answers(), "p_profile")
        assert outcome.visibility.is_visible("country") is False
        assert outcome.visibility.is_visible("visa") is False
        [failed] = [r for r in outcome.results if r.rule_id == "dangling"]
        assert failed.outcome is False
        assert failed.error is not None

    def test_broken_extra_condition_under_any_logic(self, household_survey):
        rule = {
            "id": "show_notes",
            "source_question_id": "country",
            "operator": "equals",
            "compare_value": "France",
            "logic": "any",
            "conditions": [{"source_question_id": "country", "operator": "bogus_op", "compare_value": "x"}],
            "target_id": "notes",
            "action": "show",
        }
        outcome = run_page_pass(household_survey, [rule], household_answers(), "p_details")
        [result] = outcome.results
        assert result.outcome is False
        assert result.error is not None
        assert outcome.visibility.is_visible("notes") is False

    def test_unknown_target_is_ignored(self, household_survey, household_rules):
        ghost = {
            "id": "ghost",
            "source_question_id": "country",
            "operator": "is_answered",
            "target_id": "deleted_question",
            "action": "hide",
        }
        outcome = run_page_pass(household_survey, [ghost, *household_rules], household_answers(), "p_profile")
        assert all(r.rule_id != "ghost" for r in outcome.results)
        assert outcome.skipped_rules == []

    def test_unknown_page(self, household_survey, household_rules):
        with pytest.raises(PageNotFoundError):
            evaluate_page(household_survey, household_rules, household_answers(), "p_missing")


# =============================================================
# Test: Graph wiring
# =============================================================


class TestGraph:

    def test_route_skips_fan_out_without_rules(self):
        assert route_after_context({"page_rules": []}) == "resolve"
        assert route_after_context({"page_rules": ["rule"]}) == "fan_out"

    def test_page_without_rules_has_no_results(self, household_survey, household_rules):
        outcome = run_page_pass(household_survey, household_rules, household_answers(), "p_details")
        assert outcome.results == []
        assert outcome.visibility.is_page_visible("p_details") is True

    def test_compiled_graph_is_cached(self):
        assert get_compiled_graph() is get_compiled_graph()

    def test_explicit_graph(self, household_survey, household_rules):
        outcome = run_page_pass(
            household_survey, household_rules, household_answers(), "p_profile",
            graph=compile_graph(),
        )
        assert outcome.visibility.is_visible("visa") is False

    def test_create_pass_input(self, household_survey):
        state = create_pass_input(household_survey, [], {"answers": {"country": "France"}}, "p_profile")
        assert isinstance(state["answers"], AnswerStore)
        assert state["loop_counts"] is None
        assert state["page_id"] == "p_profile"

    def test_compiled_once_under_concurrent_first_use(self, monkeypatch):
        from surveylogic.engine import graph as graph_module

        monkeypatch.setattr(graph_module, "_compiled_graph", None)
        with ThreadPoolExecutor(max_workers=8) as pool:
            graphs = list(pool.map(lambda _: get_compiled_graph(), range(16)))
        assert all(g is graphs[0] for g in graphs)

    def test_async_pass(self, household_survey, household_rules):
        outcome = asyncio.run(
            arun_page_pass(household_survey, household_rules, household_answers(), "p_profile")
        )
        assert outcome.visibility.loop_questions["school"] == {0: False, 1: True, 2: True}

    def test_async_pass_unknown_page(self, household_survey):
        with pytest.raises(PageNotFoundError):
            asyncio.run(arun_page_pass(household_survey, [], household_answers(), "p_missing"))
