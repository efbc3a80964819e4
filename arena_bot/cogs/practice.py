"""
Practice Commands

Single-player practice on the problem bank, daily skip quota and rating
lookup. Attempts are graded against the answer key.
"""

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from arena_bot.cogs.arena import is_owner
from arena_bot.config import Config
from arena_bot.constants import UIConstants
from arena_bot.database.models import AnswerType
from arena_bot.operations.problem_operations import ProblemOperations
from arena_bot.operations.rating_operations import RatingOperations
from arena_bot.operations.skip_operations import SkipOperations
from arena_bot.utils.embeds import (
    build_error_embed, build_problem_embed, build_rating_embed, build_skip_embed
)
from arena_bot.utils.exceptions import ArenaException
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.time_utils import utc_today

logger = setup_logger(__name__)


class PracticeCog(commands.Cog):
    """Practice attempts, skips and ratings"""

    def __init__(self, bot):
        self.bot = bot
        self.problem_ops: ProblemOperations = bot.problem_ops
        self.rating_ops: RatingOperations = bot.rating_ops
        self.skip_ops: SkipOperations = bot.skip_ops
        self.logger = logger

    async def _reject(self, interaction: discord.Interaction, error: ArenaException):
        self.logger.info(f"Rejected practice command for {interaction.user.id}: {error}")
        if interaction.response.is_done():
            await interaction.followup.send(embed=build_error_embed(error), ephemeral=True)
        else:
            await interaction.response.send_message(embed=build_error_embed(error), ephemeral=True)

    @app_commands.command(name="problem", description="Get a random practice problem")
    @app_commands.describe(
        difficulty="Problem difficulty from 1 (easy) to 10 (hard)",
        category_id="Only pick from this category"
    )
    async def problem(
        self,
        interaction: discord.Interaction,
        difficulty: Optional[app_commands.Range[int, 1, 10]] = None,
        category_id: Optional[int] = None
    ):
        try:
            problem = await self.problem_ops.random_problem(difficulty, category_id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        if problem is None:
            await interaction.response.send_message(
                "📭 No problems match that filter yet.", ephemeral=True
            )
            return

        await interaction.response.send_message(
            content=f"Answer with `/attempt problem_id:{problem.id} answer:<your answer>`",
            embed=build_problem_embed(problem),
            ephemeral=True
        )

    @app_commands.command(name="attempt", description="Answer a practice problem")
    @app_commands.describe(problem_id="ID of the problem", answer="Your answer")
    async def attempt(self, interaction: discord.Interaction, problem_id: int, answer: str):
        try:
            result = await self.problem_ops.submit_attempt(interaction.user.id, problem_id, answer)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        embed = discord.Embed(
            title="✅ Correct!" if result.correct else "❌ Not quite",
            description=f"Rating **{result.rating.rating:,}** ({result.rating_delta:+d})",
            color=UIConstants.SUCCESS_COLOR if result.correct else UIConstants.ERROR_COLOR
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="problem-add", description="[Owner] Add a problem to the bank")
    @app_commands.describe(
        title="Short title",
        statement="Problem statement",
        answer="Answer key",
        difficulty="Difficulty from 1 (easy) to 10 (hard)",
        category_id="Optional category",
        answer_type="How answers are compared"
    )
    @app_commands.choices(answer_type=[
        app_commands.Choice(name="Exact text", value=AnswerType.EXACT.value),
        app_commands.Choice(name="Number", value=AnswerType.NUMERIC.value),
        app_commands.Choice(name="Fraction", value=AnswerType.FRACTION.value),
    ])
    @app_commands.check(is_owner)
    async def problem_add(
        self,
        interaction: discord.Interaction,
        title: str,
        statement: str,
        answer: str,
        difficulty: app_commands.Range[int, 1, 10],
        category_id: Optional[int] = None,
        answer_type: str = AnswerType.EXACT.value
    ):
        try:
            problem = await self.problem_ops.add_problem(
                interaction.user.id, title, statement, answer, difficulty,
                category_id=category_id, answer_type=AnswerType(answer_type)
            )
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(
            content=f"✅ Added problem #{problem.id}",
            embed=build_problem_embed(problem),
            ephemeral=True
        )

    @app_commands.command(name="skip", description="Skip the current problem in a category")
    @app_commands.describe(category_id="Category of the problem you are skipping")
    async def skip(self, interaction: discord.Interaction, category_id: int):
        today = utc_today()
        try:
            await self.skip_ops.record_skip(interaction.user.id, category_id, today=today)
            quota = await self.skip_ops.get_quota(interaction.user.id, category_id, today=today)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(embed=build_skip_embed(category_id, quota), ephemeral=True)

    @app_commands.command(name="skips", description="Show how many skips you have used today")
    async def skips(self, interaction: discord.Interaction):
        try:
            counts = await self.skip_ops.get_all_skips(interaction.user.id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        limit = self.skip_ops.max_skips_per_day
        embed = discord.Embed(title="⏭️ Skips Today", color=UIConstants.DEFAULT_EMBED_COLOR)
        if counts:
            embed.description = "\n".join(
                f"Category **{category_id}**: {count}/{limit}" for category_id, count in counts.items()
            )
        else:
            embed.description = f"No skips used yet. You have {limit} per category per day."
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="rating", description="Show your rating or another player's")
    @app_commands.describe(player="Player to look up (defaults to you)")
    async def rating(self, interaction: discord.Interaction, player: Optional[discord.User] = None):
        target = player or interaction.user
        try:
            row = await self.rating_ops.get_rating(target.id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(
            embed=build_rating_embed(target, row, Config.STARTING_RATING)
        )


async def setup(bot):
    await bot.add_cog(PracticeCog(bot))
