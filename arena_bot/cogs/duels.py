"""
Duel Commands

Slash commands for 1v1 duels: open, accept, cancel, answer and forfeit.
Answers are graded by the bot; the second answer settles the duel.
Rejections (wrong state, not your duel) are reported back to the caller
immediately.
"""

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from arena_bot.database.models import DuelStatus
from arena_bot.operations.duel_operations import DuelOperations
from arena_bot.operations.problem_operations import ProblemOperations
from arena_bot.utils.embeds import (
    build_answer_embed, build_completion_embed, build_duel_embed,
    build_duel_list_embed, build_error_embed, build_problem_embed
)
from arena_bot.utils.exceptions import ArenaException, ForbiddenError
from arena_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class DuelCog(commands.Cog):
    """1v1 duel lifecycle commands"""

    def __init__(self, bot):
        self.bot = bot
        self.duel_ops: DuelOperations = bot.duel_ops
        self.problem_ops: ProblemOperations = bot.problem_ops
        self.logger = logger

    async def _reject(self, interaction: discord.Interaction, error: ArenaException):
        self.logger.info(f"Rejected {interaction.command.name if interaction.command else 'command'} "
                         f"for {interaction.user.id}: {error}")
        if interaction.response.is_done():
            await interaction.followup.send(embed=build_error_embed(error), ephemeral=True)
        else:
            await interaction.response.send_message(embed=build_error_embed(error), ephemeral=True)

    @app_commands.command(name="duel-create", description="Open a duel for anyone to accept")
    @app_commands.describe(
        difficulty="Problem difficulty from 1 (easy) to 10 (hard)",
        problem_id="Duel on a specific problem instead of a random one"
    )
    async def duel_create(
        self,
        interaction: discord.Interaction,
        difficulty: app_commands.Range[int, 1, 10] = 5,
        problem_id: Optional[int] = None
    ):
        try:
            duel = await self.duel_ops.create_duel(
                interaction.user.id, difficulty=difficulty, problem_id=problem_id
            )
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(
            embed=build_duel_embed(duel, title=f"⚔️ Duel #{duel.id} is open - use /duel-accept {duel.id}")
        )

    @app_commands.command(name="duel-accept", description="Accept an open duel")
    @app_commands.describe(duel_id="ID of the duel to accept")
    async def duel_accept(self, interaction: discord.Interaction, duel_id: int):
        try:
            duel = await self.duel_ops.accept_duel(duel_id, interaction.user.id)
            embeds = [build_duel_embed(duel)]
            if duel.problem_id is not None:
                embeds.append(build_problem_embed(await self.problem_ops.get_problem(duel.problem_id)))
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(
            content=f"<@{duel.challenger_id}> your duel was accepted! Answer with /duel-answer {duel.id}",
            embeds=embeds
        )

    @app_commands.command(name="duel-problem", description="Show the problem of one of your active duels")
    @app_commands.describe(duel_id="ID of the duel")
    async def duel_problem(self, interaction: discord.Interaction, duel_id: int):
        try:
            duel = await self.duel_ops.get_duel(duel_id)
            if interaction.user.id not in duel.participants:
                raise ForbiddenError("Only duel participants can see its problem")
            if duel.status != DuelStatus.ACTIVE or duel.problem_id is None:
                await interaction.response.send_message(
                    embed=build_duel_embed(duel), ephemeral=True
                )
                return
            problem = await self.problem_ops.get_problem(duel.problem_id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(
            embeds=[build_duel_embed(duel), build_problem_embed(problem)], ephemeral=True
        )

    @app_commands.command(name="duel-cancel", description="Cancel your duel before anyone accepts it")
    @app_commands.describe(duel_id="ID of the duel to cancel")
    async def duel_cancel(self, interaction: discord.Interaction, duel_id: int):
        try:
            duel = await self.duel_ops.cancel_duel(duel_id, interaction.user.id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(embed=build_duel_embed(duel), ephemeral=True)

    @app_commands.command(name="duel-answer", description="Submit your answer to an active duel")
    @app_commands.describe(duel_id="ID of the duel", answer="Your answer")
    async def duel_answer(self, interaction: discord.Interaction, duel_id: int, answer: str):
        await interaction.response.defer(ephemeral=True)
        try:
            submission = await self.duel_ops.submit_answer(duel_id, interaction.user.id, answer)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.followup.send(embed=build_answer_embed(submission), ephemeral=True)
        if submission.completion is not None and interaction.channel is not None:
            await interaction.channel.send(embed=build_completion_embed(submission.completion))

    @app_commands.command(name="duel-forfeit", description="Give up an active duel")
    @app_commands.describe(duel_id="ID of the duel to forfeit")
    async def duel_forfeit(self, interaction: discord.Interaction, duel_id: int):
        await interaction.response.defer()
        try:
            completion = await self.duel_ops.forfeit_duel(duel_id, interaction.user.id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.followup.send(embed=build_completion_embed(completion))

    @app_commands.command(name="duel-list", description="Show open duels and your recent duels")
    async def duel_list(self, interaction: discord.Interaction):
        try:
            open_duels = await self.duel_ops.list_open_duels(exclude_user_id=interaction.user.id, limit=10)
            my_duels = await self.duel_ops.list_duels_for_user(interaction.user.id, limit=10)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(
            embeds=[
                build_duel_list_embed(open_duels, "⚔️ Open Duels"),
                build_duel_list_embed(my_duels, "📜 Your Duels"),
            ],
            ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(DuelCog(bot))
