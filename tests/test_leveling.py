"""
Unit tests for the leveling manager
"""

import asyncio

import pytest

from core.config import LevelingConfig, XPBooster
from core.errors import NotFoundError, ValidationError
from core.leveling import LevelingManager, SOURCE_VOICE
from utils.config_manager import ConfigManager

GUILD_ID = 987654321
USER_ID = 123456789


@pytest.mark.asyncio
async def test_level_tracks_total_xp(leveling):
    """Level always equals total XP // 1000"""
    for amount in (0, 15, 400, 985, 1, 2599, 3000, 7):
        await leveling.award_xp(GUILD_ID, USER_ID, amount)
        stats = await leveling.get_stats(GUILD_ID, USER_ID)
        assert stats.level == stats.total_xp // 1000
        assert stats.xp == stats.total_xp % 1000


@pytest.mark.asyncio
async def test_new_record_never_levels_up(leveling):
    event = await leveling.award_xp(GUILD_ID, USER_ID, 1500)
    assert event is None

    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert stats.total_xp == 1500
    assert stats.level == 1


@pytest.mark.asyncio
async def test_crossing_boundary_emits_single_level_up(leveling):
    events = []

    async def listener(event):
        events.append(event)

    leveling.subscribe(listener)

    await leveling.award_xp(GUILD_ID, USER_ID, 999)
    event = await leveling.award_xp(GUILD_ID, USER_ID, 1)

    assert event is not None
    assert (event.old_level, event.new_level, event.total_xp) == (0, 1, 1000)
    assert events == [event]


@pytest.mark.asyncio
async def test_no_level_up_inside_a_level(leveling):
    await leveling.award_xp(GUILD_ID, USER_ID, 1998)
    assert await leveling.award_xp(GUILD_ID, USER_ID, 1) is None

    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert (stats.total_xp, stats.level) == (1999, 1)


@pytest.mark.asyncio
async def test_reaching_2000_moves_to_level_2(leveling):
    await leveling.award_xp(GUILD_ID, USER_ID, 1999)
    event = await leveling.award_xp(GUILD_ID, USER_ID, 1)
    assert (event.old_level, event.new_level) == (1, 2)


@pytest.mark.asyncio
async def test_multi_level_jump_is_one_event(leveling):
    await leveling.award_xp(GUILD_ID, USER_ID, 500)
    event = await leveling.award_xp(GUILD_ID, USER_ID, 2600)
    assert (event.old_level, event.new_level, event.total_xp) == (0, 3, 3100)


@pytest.mark.asyncio
async def test_negative_award_rejected(leveling):
    with pytest.raises(ValidationError):
        await leveling.award_xp(GUILD_ID, USER_ID, -5)


@pytest.mark.asyncio
async def test_failing_listener_keeps_award(leveling):
    async def broken(event):
        raise RuntimeError("announce failed")

    leveling.subscribe(broken)
    await leveling.award_xp(GUILD_ID, USER_ID, 999)
    event = await leveling.award_xp(GUILD_ID, USER_ID, 5)

    assert event.new_level == 1
    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert stats.total_xp == 1004


@pytest.mark.asyncio
async def test_message_cooldown_scenario(leveling, clock):
    """Messages at 0s, 30s and 90s with a 60s cooldown give 30 XP"""
    await leveling.message_award(GUILD_ID, USER_ID)
    clock.advance(30)
    await leveling.message_award(GUILD_ID, USER_ID)
    clock.advance(60)
    await leveling.message_award(GUILD_ID, USER_ID)

    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert stats.total_xp == 30
    assert stats.message_count == 2


@pytest.mark.asyncio
async def test_dropped_message_does_not_refresh_cooldown(leveling, clock):
    await leveling.message_award(GUILD_ID, USER_ID)
    clock.advance(30)
    await leveling.message_award(GUILD_ID, USER_ID)
    clock.advance(30)
    await leveling.message_award(GUILD_ID, USER_ID)

    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert stats.total_xp == 30


@pytest.mark.asyncio
async def test_message_award_disabled(db, transport, clock):
    manager = LevelingManager(db, transport, LevelingConfig(enabled=False), clock=clock)
    assert await manager.message_award(GUILD_ID, USER_ID) is None
    assert await manager.get_stats(GUILD_ID, USER_ID) is None


@pytest.mark.asyncio
async def test_booster_resolution(leveling, clock):
    assert leveling.effective_multiplier() == 1.0

    leveling.config.xp_boosters = [
        XPBooster(multiplier=1.5, expires_at=clock() + 3600),
        XPBooster(multiplier=2.0, expires_at=clock() - 1)
    ]
    assert leveling.effective_multiplier() == 1.5


@pytest.mark.asyncio
async def test_role_scoped_booster(leveling, clock):
    leveling.config.xp_boosters = [
        XPBooster(multiplier=1.5, expires_at=clock() + 3600),
        XPBooster(multiplier=3.0, expires_at=clock() + 3600, role_id=42)
    ]
    assert leveling.effective_multiplier({7}) == 1.5
    assert leveling.effective_multiplier({7, 42}) == 3.0


@pytest.mark.asyncio
async def test_boosted_award_rounds_half_up(leveling, clock):
    leveling.config.xp_boosters = [XPBooster(multiplier=1.5, expires_at=clock() + 3600)]
    await leveling.award_xp(GUILD_ID, USER_ID, 15, role_ids=set())

    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert stats.total_xp == 23


@pytest.mark.asyncio
async def test_add_booster_validation(leveling):
    with pytest.raises(ValidationError):
        leveling.add_booster(1.0, 3600)
    with pytest.raises(ValidationError):
        leveling.add_booster(2.0, 0)


@pytest.mark.asyncio
async def test_add_booster_prunes_expired(leveling, clock):
    leveling.add_booster(2.0, 60)
    clock.advance(120)
    booster = leveling.add_booster(1.5, 3600)

    assert leveling.config.xp_boosters == [booster]
    assert leveling.active_boosters() == [booster]


@pytest.mark.asyncio
async def test_rank_is_a_bijection(leveling):
    totals = {1: 500, 2: 2500, 3: 500, 4: 0, 5: 1200}
    for user_id, total in totals.items():
        await leveling.award_xp(GUILD_ID, user_id, total)

    ranks = {user_id: await leveling.rank(GUILD_ID, user_id) for user_id in totals}

    assert sorted(ranks.values()) == [1, 2, 3, 4, 5]
    assert ranks[2] == 1
    # Equal totals are ordered by user id
    assert ranks[1] < ranks[3]


@pytest.mark.asyncio
async def test_leaderboard_order(leveling):
    for user_id, total in {10: 300, 11: 900, 12: 300}.items():
        await leveling.award_xp(GUILD_ID, user_id, total)

    board = await leveling.leaderboard(GUILD_ID, limit=2)
    assert [entry.user_id for entry in board] == [11, 10]

    with pytest.raises(ValidationError):
        await leveling.leaderboard(GUILD_ID, limit=0)


@pytest.mark.asyncio
async def test_rank_unknown_user(leveling):
    with pytest.raises(NotFoundError):
        await leveling.rank(GUILD_ID, USER_ID)


@pytest.mark.asyncio
async def test_member_join_creates_empty_record(leveling):
    assert await leveling.member_join(GUILD_ID, USER_ID) is True
    assert await leveling.member_join(GUILD_ID, USER_ID) is False

    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert (stats.total_xp, stats.level) == (0, 0)


@pytest.mark.asyncio
async def test_voice_sub_minute_gives_nothing(leveling, clock):
    leveling.voice_join(GUILD_ID, USER_ID)
    clock.advance(59)

    assert await leveling.voice_leave(GUILD_ID, USER_ID) is None
    assert await leveling.get_stats(GUILD_ID, USER_ID) is None
    assert not leveling.in_voice(GUILD_ID, USER_ID)


@pytest.mark.asyncio
async def test_voice_accrual_and_leave(leveling, clock):
    leveling.voice_join(GUILD_ID, USER_ID)
    clock.advance(150)
    await leveling.voice_accrual()

    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert (stats.total_xp, stats.voice_minutes) == (20, 2)

    # 30s left over from the tick plus 40s more is one whole minute
    clock.advance(40)
    await leveling.voice_leave(GUILD_ID, USER_ID)

    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert (stats.total_xp, stats.voice_minutes) == (30, 3)
    assert stats.message_count == 0


@pytest.mark.asyncio
async def test_voice_accrual_continues_after_failure(leveling, clock, monkeypatch):
    leveling.voice_join(GUILD_ID, 1)
    leveling.voice_join(GUILD_ID, 2)
    clock.advance(60)

    real_award = leveling.award_xp

    async def flaky_award(guild_id, user_id, *args, **kwargs):
        if user_id == 1:
            raise RuntimeError("store down")
        return await real_award(guild_id, user_id, *args, **kwargs)

    monkeypatch.setattr(leveling, "award_xp", flaky_award)
    await leveling.voice_accrual()

    assert await leveling.get_stats(GUILD_ID, 1) is None
    assert (await leveling.get_stats(GUILD_ID, 2)).total_xp == 10


@pytest.mark.asyncio
async def test_forget_member_drops_voice_session(leveling, clock):
    leveling.voice_join(GUILD_ID, USER_ID)
    leveling.forget_member(GUILD_ID, USER_ID)
    clock.advance(300)

    assert await leveling.voice_accrual() == []
    assert await leveling.get_stats(GUILD_ID, USER_ID) is None


@pytest.mark.asyncio
async def test_voice_award_source(leveling):
    await leveling.award_xp(GUILD_ID, USER_ID, 10, SOURCE_VOICE, minutes=1)
    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert (stats.message_count, stats.voice_minutes) == (0, 1)


@pytest.mark.asyncio
async def test_role_rewards_grant_missing_roles(leveling, transport):
    leveling.add_role_reward(1, 10)
    leveling.add_role_reward(5, 50)
    leveling.add_role_reward(2, 20)

    granted = await leveling.check_role_rewards(GUILD_ID, USER_ID, 2, role_ids={20})

    assert granted == [10]
    assert transport.granted == [(GUILD_ID, USER_ID, 10)]


@pytest.mark.asyncio
async def test_role_reward_failure_is_isolated(leveling, transport):
    leveling.add_role_reward(1, 10)
    leveling.add_role_reward(2, 20)
    transport.fail_grant.add(10)

    granted = await leveling.check_role_rewards(GUILD_ID, USER_ID, 3, role_ids=set())
    assert granted == [20]


@pytest.mark.asyncio
async def test_role_reward_set_semantics(leveling):
    leveling.add_role_reward(3, 10)
    leveling.add_role_reward(7, 10)

    assert [(r.level, r.role_id) for r in leveling.config.role_rewards] == [(7, 10)]
    assert leveling.remove_role_reward(10) is True
    assert leveling.remove_role_reward(10) is False

    with pytest.raises(ValidationError):
        leveling.add_role_reward(0, 11)


@pytest.mark.asyncio
async def test_rewards_persist_to_config(db, transport, clock, tmp_path):
    config_manager = ConfigManager(str(tmp_path / "config.yaml"))
    manager = LevelingManager(db, transport, LevelingConfig(), config_manager, clock=clock)

    manager.add_role_reward(5, 50)

    reloaded = ConfigManager(str(tmp_path / "config.yaml"))
    assert reloaded.get("modules.leveling.role_rewards") == [{"level": 5, "role_id": 50}]


@pytest.mark.asyncio
async def test_concurrent_awards_lose_no_xp(leveling):
    results = await asyncio.gather(
        *(leveling.award_xp(GUILD_ID, USER_ID, 10) for _ in range(20)),
        return_exceptions=True
    )

    assert [r for r in results if isinstance(r, Exception)] == []
    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert stats.total_xp == 200
    assert stats.level == 0


@pytest.mark.asyncio
async def test_concurrent_awards_across_a_boundary_level_up_once(leveling):
    await leveling.award_xp(GUILD_ID, USER_ID, 950)

    results = await asyncio.gather(*(leveling.award_xp(GUILD_ID, USER_ID, 10) for _ in range(10)))

    assert [(e.old_level, e.new_level) for e in results if e] == [(0, 1)]
    stats = await leveling.get_stats(GUILD_ID, USER_ID)
    assert stats.total_xp == 1050
