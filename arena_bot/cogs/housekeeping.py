"""
Housekeeping Cog - Background Tasks

Runs the tournament scheduler tick: starts tournaments that are due, ends
expired ones, sweeps arena pairing and opens Swiss rounds. A failed tick is
logged and the next one retries.
"""

import discord
from discord import app_commands
from discord.ext import commands, tasks

from arena_bot.config import Config
from arena_bot.operations.tournament_operations import TournamentOperations
from arena_bot.utils.exceptions import ArenaException
from arena_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class HousekeepingCog(commands.Cog):
    """Background scheduler for arena tournaments"""

    def __init__(self, bot):
        self.bot = bot
        self.tournament_ops: TournamentOperations = bot.tournament_ops
        self.logger = logger
        self.arena_tick.change_interval(seconds=Config.PAIRING_INTERVAL_SECONDS)

    async def cog_load(self):
        self.arena_tick.start()
        self.logger.info("HousekeepingCog: Arena tick started")

    def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        self.arena_tick.cancel()
        self.logger.info("HousekeepingCog: Arena tick stopped")

    @tasks.loop(seconds=3)
    async def arena_tick(self):
        try:
            result = await self.tournament_ops.tick()
        except ArenaException as e:
            self.logger.error(f"Arena tick failed, retrying next interval: {e}")
            return

        if result.started or result.ended or result.duels_created or result.rounds_generated:
            self.logger.info(
                f"Arena tick: started={result.started} ended={result.ended} "
                f"duels_created={result.duels_created} rounds_generated={result.rounds_generated}"
            )
        if result.pairing_failures:
            self.logger.warning(f"Arena tick: {result.pairing_failures} pairing sweep(s) failed")

    @arena_tick.before_loop
    async def before_arena_tick(self):
        """Wait for bot to be ready before starting the tick"""
        await self.bot.wait_until_ready()

    @app_commands.command(name="admin-tick", description="[Owner] Run the tournament scheduler once now")
    async def admin_tick(self, interaction: discord.Interaction):
        if interaction.user.id != Config.OWNER_DISCORD_ID:
            await interaction.response.send_message(
                "❌ This command is restricted to the bot owner.", ephemeral=True
            )
            return

        await interaction.response.defer(ephemeral=True)
        try:
            result = await self.tournament_ops.tick()
        except ArenaException as e:
            await interaction.followup.send(f"❌ {e.user_message}", ephemeral=True)
            return

        embed = discord.Embed(title="🧹 Scheduler Tick", color=discord.Color.green())
        embed.add_field(name="Started", value=", ".join(map(str, result.started)) or "-", inline=True)
        embed.add_field(name="Ended", value=", ".join(map(str, result.ended)) or "-", inline=True)
        embed.add_field(name="Duels Created", value=str(result.duels_created), inline=True)
        embed.add_field(name="Swiss Rounds", value=str(result.rounds_generated), inline=True)
        if result.pairing_failures:
            embed.add_field(name="Pairing Failures", value=str(result.pairing_failures), inline=True)
        await interaction.followup.send(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(HousekeepingCog(bot))
