"""Daily reward and streak tests."""

from datetime import datetime, timedelta, timezone

from market import ErrorKind, LEADERBOARD_TAG
from market.rewards import DAILY_REWARD_POINTS, evaluate_claim, start_of_next_utc_day, utc_day
from tests.conftest import NOW, run_concurrently

DAY = datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)


def test_first_claim_starts_streak():
    decision = evaluate_claim(DAY, None, 0)
    assert decision.eligible
    assert decision.new_streak == 1
    assert decision.next_claim_at == datetime(2025, 3, 11, tzinfo=timezone.utc)


def test_same_utc_day_is_not_eligible():
    decision = evaluate_claim(DAY.replace(hour=23), DAY, 4)
    assert not decision.eligible
    assert decision.new_streak == 4


def test_yesterday_extends_and_gap_resets():
    assert evaluate_claim(DAY + timedelta(days=1), DAY, 4).new_streak == 5
    assert evaluate_claim(DAY + timedelta(days=2), DAY, 4).new_streak == 1


def test_midnight_boundary_is_calendar_based():
    before = datetime(2025, 3, 10, 23, 59, 59, 999000, tzinfo=timezone.utc)
    after = datetime(2025, 3, 11, 0, 0, 0, tzinfo=timezone.utc)
    decision = evaluate_claim(after, before, 1)
    assert decision.eligible
    assert decision.new_streak == 2


def test_almost_48_hours_later_still_counts_as_consecutive():
    early = datetime(2025, 3, 10, 0, 0, 1, tzinfo=timezone.utc)
    late = datetime(2025, 3, 11, 23, 59, 59, tzinfo=timezone.utc)
    assert evaluate_claim(late, early, 3).new_streak == 4


def test_day_keys_use_utc():
    ist = timezone(timedelta(hours=5, minutes=30))
    # 02:00 IST on the 11th is still the 10th in UTC
    assert utc_day(datetime(2025, 3, 11, 2, 0, tzinfo=ist)) == "2025-03-10"
    assert utc_day(datetime(2025, 3, 10, 20, 0)) == "2025-03-10"
    assert start_of_next_utc_day(datetime(2025, 12, 31, 18, 0, tzinfo=timezone.utc)) == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_claim_awards_points_and_records_time(manager, make_user):
    user = make_user(balance=0)

    result = manager.claim_daily_reward(user.user_id, now=DAY)

    assert result.success
    assert result.points_awarded == DAILY_REWARD_POINTS == 100
    assert result.new_balance == 100
    assert result.new_streak == 1
    assert result.next_claim_at == datetime(2025, 3, 11, tzinfo=timezone.utc)

    stored = manager.get_user(user.user_id)
    assert stored.balance == 100
    assert stored.last_daily_claim == DAY


def test_second_claim_same_day_is_rejected(manager, make_user):
    user = make_user(balance=0)
    manager.claim_daily_reward(user.user_id, now=DAY)

    again = manager.claim_daily_reward(user.user_id, now=DAY + timedelta(hours=10))

    assert not again.success
    assert again.error == ErrorKind.ALREADY_CLAIMED_TODAY
    assert again.already_claimed
    assert again.next_claim_at == datetime(2025, 3, 11, tzinfo=timezone.utc)
    stored = manager.get_user(user.user_id)
    assert (stored.balance, stored.streak_count, stored.last_daily_claim) == (100, 1, DAY)


def test_streak_sequence_with_a_missed_day(manager, make_user):
    user = make_user(balance=0)

    streaks = [
        manager.claim_daily_reward(user.user_id, now=DAY + timedelta(days=offset)).new_streak
        for offset in (0, 1, 3)
    ]

    assert streaks == [1, 2, 1]
    assert manager.get_user(user.user_id).balance == 300


def test_claim_rejections(manager):
    assert manager.claim_daily_reward(None, now=DAY).error == ErrorKind.UNAUTHENTICATED
    assert manager.claim_daily_reward("USR_NOBODY", now=DAY).error == ErrorKind.NOT_FOUND


def test_naive_now_is_treated_as_utc(manager, make_user):
    user = make_user(balance=0)
    manager.claim_daily_reward(user.user_id, now=datetime(2025, 3, 10, 23, 0))

    result = manager.claim_daily_reward(user.user_id, now=datetime(2025, 3, 11, 0, 30))

    assert result.success
    assert result.new_streak == 2


def test_claim_publishes_leaderboard_signal(manager, events, make_user):
    seen = []
    events.subscribe(LEADERBOARD_TAG, seen.append)
    user = make_user(balance=0)

    manager.claim_daily_reward(user.user_id, now=DAY)
    manager.claim_daily_reward(user.user_id, now=DAY)

    assert seen == [LEADERBOARD_TAG]


def test_claim_and_wager_for_same_user_serialize(manager, make_user, make_market):
    user = make_user(balance=100)
    market = make_market()
    outcome_id = market.outcomes[0].outcome_id

    claim, wager = run_concurrently(
        lambda: manager.claim_daily_reward(user.user_id, now=NOW),
        lambda: manager.place_wager(user.user_id, outcome_id, 150, now=NOW),
    )

    # The wager only fits if the claim landed first; either order must add up
    assert claim.success
    assert wager.success or wager.error == ErrorKind.INSUFFICIENT_BALANCE
    staked = 150 if wager.success else 0
    assert manager.get_user(user.user_id).balance == 100 + DAILY_REWARD_POINTS - staked
    assert manager.get_market(market.market_id).total_pool == staked
    assert len(manager.get_market_bets(market.market_id)) == (1 if wager.success else 0)


def test_claim_and_affordable_wager_both_land(manager, make_user, make_market):
    user = make_user(balance=200)
    market = make_market()

    claim, wager = run_concurrently(
        lambda: manager.claim_daily_reward(user.user_id, now=NOW),
        lambda: manager.place_wager(user.user_id, market.outcomes[1].outcome_id, 150, now=NOW),
    )

    assert claim.success and wager.success
    stored = manager.get_user(user.user_id)
    assert (stored.balance, stored.streak_count) == (150, 1)
