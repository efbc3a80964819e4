"""Tests for the practice cog's command handlers."""

from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from arena_bot.cogs import practice
from arena_bot.cogs.practice import PracticeCog

USER = 5001


@pytest.fixture
def cog(problem_ops, rating_ops, skip_ops):
    bot = SimpleNamespace(problem_ops=problem_ops, rating_ops=rating_ops, skip_ops=skip_ops)
    return PracticeCog(bot)


@pytest.fixture
def interaction():
    interaction = MagicMock()
    interaction.user.id = USER
    interaction.response.is_done.return_value = False
    interaction.response.send_message = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


class TestSkipCommand:
    async def test_quota_is_read_for_the_day_the_skip_was_recorded(
        self, cog, interaction, skip_ops, monkeypatch
    ):
        # The clock crosses midnight between the two reads if asked twice
        days = iter([date(2026, 3, 1), date(2026, 3, 2)])
        monkeypatch.setattr(practice, 'utc_today', lambda: next(days))
        shown = []

        def capture(category_id, quota):
            shown.append(quota)
            return discord.Embed()

        monkeypatch.setattr(practice, 'build_skip_embed', capture)

        await cog.skip.callback(cog, interaction, 7)

        assert [q.skip_count for q in shown] == [1]
        assert (await skip_ops.get_quota(USER, 7, today=date(2026, 3, 1))).skip_count == 1
        interaction.response.send_message.assert_awaited_once()

    async def test_exhausted_quota_is_rejected(self, cog, interaction, skip_ops, monkeypatch):
        monkeypatch.setattr(practice, 'utc_today', lambda: date(2026, 3, 1))
        for _ in range(skip_ops.max_skips_per_day):
            await skip_ops.record_skip(USER, 7, today=date(2026, 3, 1))

        await cog.skip.callback(cog, interaction, 7)

        embed = interaction.response.send_message.await_args.kwargs['embed']
        assert embed.title == "Request Rejected"
        assert (await skip_ops.get_quota(USER, 7, today=date(2026, 3, 1))).skip_count == skip_ops.max_skips_per_day
