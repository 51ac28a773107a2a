import random

import pytest

from tool_lock.challenges import (
    BYPASS_COOLDOWNS,
    JUSTIFICATION_MIN_WORDS,
    check_answer,
    cooldown_for_attempt,
    generate_challenges,
    math_problem,
)
from tool_lock.schema import Challenge, ChallengeType


def kinds(challenges):
    return [c.type for c in challenges]


def test_attempt_one_is_short_typing():
    (challenge,) = generate_challenges(1, random.Random(0))
    assert challenge.type is ChallengeType.TYPING
    assert len(challenge.prompt) == 30
    assert challenge.cooldown_seconds == 60


def test_attempt_two_is_long_typing():
    (challenge,) = generate_challenges(2, random.Random(0))
    assert challenge.type is ChallengeType.TYPING
    assert len(challenge.prompt) == 50


def test_attempt_three_is_cooldown_then_math():
    challenges = generate_challenges(3, random.Random(0))
    assert kinds(challenges) == [ChallengeType.COOLDOWN] + [ChallengeType.MATH] * 3
    assert challenges[0].cooldown_seconds == BYPASS_COOLDOWNS[3]


def test_attempt_four_is_justification():
    (challenge,) = generate_challenges(4, random.Random(0))
    assert challenge.type is ChallengeType.JUSTIFICATION
    assert challenge.min_words == JUSTIFICATION_MIN_WORDS


@pytest.mark.parametrize("attempt", [5, 6, 12])
def test_later_attempts_get_everything(attempt):
    challenges = generate_challenges(attempt, random.Random(0))
    assert kinds(challenges) == (
        [ChallengeType.COOLDOWN] + [ChallengeType.MATH] * 5 + [ChallengeType.TYPING]
    )
    assert challenges[0].cooldown_seconds == BYPASS_COOLDOWNS[-1]
    assert len(challenges[-1].prompt) == 80


def test_cooldown_lookup_clamps():
    assert cooldown_for_attempt(1) == 60
    assert cooldown_for_attempt(2) == 0
    assert cooldown_for_attempt(4) == 300
    assert cooldown_for_attempt(50) == BYPASS_COOLDOWNS[-1]


def test_same_seed_same_challenges():
    first = generate_challenges(5, random.Random(42))
    second = generate_challenges(5, random.Random(42))
    assert first == second


def test_attempt_must_be_positive():
    with pytest.raises(ValueError):
        generate_challenges(0)


def test_math_problem_answer_matches_prompt():
    rng = random.Random(7)
    for _ in range(50):
        problem = math_problem(rng)
        a, op, b = problem.prompt.split()
        assert 100 <= int(a) <= 999
        assert 10 <= int(b) <= 99
        expected = {"*": int(a) * int(b), "+": int(a) + int(b), "-": int(a) - int(b)}[op]
        assert problem.answer == str(expected)


class TestCheckAnswer:
    def test_typing_must_be_reversed(self):
        challenge = Challenge(type=ChallengeType.TYPING, prompt="abc123")
        assert check_answer(challenge, "321cba")
        assert not check_answer(challenge, "abc123")

    def test_math_ignores_surrounding_whitespace(self):
        challenge = Challenge(type=ChallengeType.MATH, prompt="100 + 10", answer="110")
        assert check_answer(challenge, " 110 ")
        assert not check_answer(challenge, "111")

    def test_justification_counts_words(self):
        challenge = Challenge(
            type=ChallengeType.JUSTIFICATION, min_words=JUSTIFICATION_MIN_WORDS
        )
        assert not check_answer(challenge, "word " * 49)
        assert check_answer(challenge, "word " * 50)

    def test_cooldown_always_passes(self):
        assert check_answer(Challenge(type=ChallengeType.COOLDOWN, cooldown_seconds=5), "")
