from __future__ import annotations

from types import SimpleNamespace

from autograder_api.feedback import _truncate_output, aggregate_scores, details_url
from autograder_api.schemas import AutograderFeedback


def _feedback(**overrides) -> AutograderFeedback:  # noqa: ANN003
    payload = {"lint": {"status": "pass"}, "tests": []}
    payload.update(overrides)
    return AutograderFeedback.model_validate(payload)


def test_per_test_scores_are_summed_without_explicit_totals() -> None:
    feedback = _feedback(tests=[{"name": "a", "score": 5, "max_score": 10}, {"name": "b", "score": 3, "max_score": 5}])
    assert aggregate_scores(feedback) == (8.0, 15.0)


def test_missing_per_test_score_counts_as_zero() -> None:
    feedback = _feedback(tests=[{"name": "a", "score": 2.5, "max_score": 5}, {"name": "b", "max_score": 5}])
    assert aggregate_scores(feedback) == (2.5, 10.0)


def test_explicit_totals_override_tests() -> None:
    feedback = _feedback(
        score=42,
        max_score=50,
        tests=[{"name": "a", "score": 5, "max_score": 10}],
    )
    assert aggregate_scores(feedback) == (42.0, 50.0)


def test_explicit_zero_score_is_not_replaced_by_sum() -> None:
    feedback = _feedback(score=0, tests=[{"name": "a", "score": 5, "max_score": 10}])
    assert aggregate_scores(feedback) == (0.0, 10.0)


def test_sum_does_not_depend_on_test_order() -> None:
    scores = [0.1, 0.2, 0.3, 1e16, -1e16]
    forward = _feedback(tests=[{"name": str(i), "score": s} for i, s in enumerate(scores)])
    backward = _feedback(tests=[{"name": str(i), "score": s} for i, s in enumerate(reversed(scores))])
    assert aggregate_scores(forward) == aggregate_scores(backward)


def test_no_tests_and_no_totals_scores_zero() -> None:
    assert aggregate_scores(_feedback()) == (0.0, 0.0)


def test_truncate_output_keeps_short_text() -> None:
    assert _truncate_output("short", limit=10) == "short"
    assert _truncate_output("x" * 20, limit=10) == "x" * 10 + "\n...<truncated>"


def test_details_url_points_at_the_submission() -> None:
    submission = SimpleNamespace(id=11, class_id=7, assignment_id=3)
    assert details_url(submission).endswith("/course/7/assignments/3/submissions/11")
