"""
Guess scoring rules and the per-session recalculation used by the score
recalculation job.
"""

import math
from logging import getLogger

from django.db import transaction

from gamebox.models import GameSession, Guess

logger = getLogger(__name__)

BASE_SCORE = 100
MAX_GUESS_SCORE = 200
HINT_PENALTY = 0.20
HINT_POWER_UPS = (Guess.PowerUp.HINT_YEAR, Guess.PowerUp.HINT_PUBLISHER)

# (answered in under N seconds, multiplier), fastest first
SPEED_TIERS = (
    (3, 2.0),
    (5, 1.75),
    (10, 1.5),
    (20, 1.25),
)


def _round_half_up(value):
    return math.floor(value + 0.5)


def speed_multiplier(time_taken_ms):
    if time_taken_ms is None:
        return 1.0
    seconds = time_taken_ms / 1000
    for limit, multiplier in SPEED_TIERS:
        if seconds < limit:
            return multiplier
    return 1.0


def guess_score(is_correct, time_taken_ms=None, power_up_used=""):
    """
    Points for one guess: nothing for a wrong answer, otherwise the base
    score scaled by answer speed and capped, minus a share for hint power-ups.
    """
    if not is_correct:
        return 0

    score = min(
        _round_half_up(BASE_SCORE * speed_multiplier(time_taken_ms)), MAX_GUESS_SCORE
    )
    if power_up_used in HINT_POWER_UPS:
        score -= _round_half_up(score * HINT_PENALTY)
    return max(0, score)


class SessionRecalculation:
    def __init__(self, session, old_score, new_score, guess_updates):
        self.session = session
        self.old_score = old_score
        self.new_score = new_score
        self.guess_updates = guess_updates

    @property
    def changed(self):
        return self.old_score != self.new_score

    @property
    def delta(self):
        return abs(self.new_score - self.old_score)

    def __repr__(self):
        return (
            f"<SessionRecalculation session={self.session.pk} "
            f"{self.old_score} -> {self.new_score}>"
        )


def recalculate_session(session, dry_run=False):
    """
    Recompute every guess of ``session`` and, unless ``dry_run``, store the new
    total and the guesses whose score changed in one transaction. Nothing is
    written when the total is unchanged.
    """
    guesses = list(session.guesses.order_by("created", "pk"))

    new_total = 0
    guess_updates = []
    for guess in guesses:
        score = guess_score(guess.is_correct, guess.time_taken_ms, guess.power_up_used)
        new_total += score
        if score != guess.score_earned:
            guess_updates.append((guess.pk, score))

    result = SessionRecalculation(
        session, session.total_score, new_total, guess_updates
    )

    if result.changed and not dry_run:
        with transaction.atomic():
            GameSession.objects.filter(pk=session.pk).update(total_score=new_total)
            for guess_pk, score in guess_updates:
                Guess.objects.filter(pk=guess_pk).update(score_earned=score)
        logger.debug(
            "Session %s rescored from %s to %s", session.pk, result.old_score, new_total
        )

    return result
