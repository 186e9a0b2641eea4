import pytest

from simulations.scoring import Answer, Rubric, ScoredQuestion, round_half_up, score

RUBRIC = Rubric(correct_points=5, wrong_points=-1, blank_points=0, passing_score=None, max_score=20)


def _questions():
    return [
        ScoredQuestion("q1", "BIO", correct_option_id="a1"),
        ScoredQuestion("q2", "BIO", correct_option_id="a2"),
        ScoredQuestion("q3", "CHEM", correct_option_id="a3"),
        ScoredQuestion("q4", "CHEM", correct_option_id="a4"),
    ]


def test_mixed_answers_sum_signed_points():
    answers = [
        Answer("q1", "a1"),
        Answer("q2", "wrong"),
        Answer("q3", None),
        Answer("q4", "a4"),
    ]
    result = score(answers, _questions(), RUBRIC)

    assert [e.earned_points for e in result.evaluated] == [5, -1, 0, 5]
    assert result.total_score == 9
    assert (result.correct_count, result.wrong_count, result.blank_count) == (2, 1, 1)
    assert result.total_questions == 4
    assert result.percentage_score == pytest.approx(45.0)
    assert result.passed is True


def test_missing_answers_count_as_blank_and_extra_answers_are_ignored():
    result = score([Answer("q1", "a1"), Answer("zzz", "a9")], _questions(), RUBRIC)
    assert result.blank_count == 3
    assert result.total_score == 5


def test_subject_breakdown_sorted_by_percentage():
    answers = [Answer("q1", "x"), Answer("q2", None), Answer("q3", "a3"), Answer("q4", "a4")]
    result = score(answers, _questions(), RUBRIC)

    assert result.subject_breakdown == [
        {"subject": "CHEM", "correct": 2, "wrong": 0, "blank": 0, "total": 2, "percentage": 100},
        {"subject": "BIO", "correct": 0, "wrong": 1, "blank": 1, "total": 2, "percentage": 0},
    ]
    assert result.best_subject.subject == "CHEM"
    assert result.worst_subject.subject == "BIO"


def test_equal_percentages_keep_first_appearance_order():
    answers = [Answer("q1", "a1"), Answer("q3", "a3")]
    result = score(answers, _questions(), RUBRIC)
    assert [s["subject"] for s in result.subject_breakdown] == ["BIO", "CHEM"]


def test_passing_score_threshold_is_inclusive():
    rubric = Rubric(correct_points=1, wrong_points=0, passing_score=2)
    qs = _questions()
    assert score([Answer("q1", "a1"), Answer("q2", "a2")], qs, rubric).passed is True
    assert score([Answer("q1", "a1")], qs, rubric).passed is False


def test_no_max_score_gives_zero_percentage():
    result = score([Answer("q1", "a1")], _questions(), Rubric(correct_points=1))
    assert result.percentage_score == 0.0


def test_per_question_points_override_rubric():
    qs = [ScoredQuestion("q1", "BIO", "a1", points=2, negative_points=-0.5)]
    assert score([Answer("q1", "a1")], qs, RUBRIC).total_score == 2
    assert score([Answer("q1", "b")], qs, RUBRIC).total_score == -0.5


def test_open_text_answer_without_selection_is_blank():
    qs = [ScoredQuestion("q1", "LOG", correct_option_id=None)]
    empty = score([Answer("q1", None, "   ")], qs, RUBRIC)
    typed = score([Answer("q1", None, "forty-two")], qs, RUBRIC)

    assert empty.blank_count == 1
    assert typed.blank_count == 1
    assert typed.wrong_count == 0
    assert typed.total_score == 0


def test_inputs_are_not_mutated():
    answers = [Answer("q1", "a1")]
    qs = _questions()
    score(answers, qs, RUBRIC)
    assert answers == [Answer("q1", "a1")]
    assert qs == _questions()


@pytest.mark.parametrize("value, expected", [(0.5, 1), (1.5, 2), (2.5, 3), (66.66, 67), (33.33, 33)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected
