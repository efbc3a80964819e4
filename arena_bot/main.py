import asyncio
import traceback
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from arena_bot.config import Config
from arena_bot.database.database import Database
from arena_bot.operations.arena_operations import ArenaOperations
from arena_bot.operations.duel_operations import DuelOperations
from arena_bot.operations.problem_operations import ProblemOperations
from arena_bot.operations.rating_operations import RatingOperations
from arena_bot.operations.skip_operations import SkipOperations
from arena_bot.operations.swiss_operations import SwissOperations
from arena_bot.operations.tournament_operations import TournamentOperations
from arena_bot.services.rating_cache import CachedRatingService
from arena_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class ArenaBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.rating_cache: Optional[CachedRatingService] = None
        self.rating_ops: Optional[RatingOperations] = None
        self.problem_ops: Optional[ProblemOperations] = None
        self.skip_ops: Optional[SkipOperations] = None
        self.arena_ops: Optional[ArenaOperations] = None
        self.swiss_ops: Optional[SwissOperations] = None
        self.duel_ops: Optional[DuelOperations] = None
        self.tournament_ops: Optional[TournamentOperations] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Arena Bot...")

        # Initialize database
        self.db = Database()
        await self.db.initialize()

        # Operations are shared by every cog
        self.rating_cache = CachedRatingService(self.db.session_factory)
        self.rating_ops = RatingOperations(self.db, cache=self.rating_cache)
        self.problem_ops = ProblemOperations(self.db, rating_ops=self.rating_ops)
        self.skip_ops = SkipOperations(self.db)
        self.arena_ops = ArenaOperations(self.db)
        self.swiss_ops = SwissOperations(self.db)
        self.duel_ops = DuelOperations(
            self.db,
            rating_ops=self.rating_ops,
            arena_ops=self.arena_ops,
            swiss_ops=self.swiss_ops
        )
        self.tournament_ops = TournamentOperations(
            self.db,
            arena_ops=self.arena_ops,
            swiss_ops=self.swiss_ops
        )

        # Load cogs
        await self.load_cogs()

        # Sync slash commands
        await self._sync_commands()

        self.logger.info("Arena Bot setup complete!")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'arena_bot.cogs.duels',
            'arena_bot.cogs.arena',
            'arena_bot.cogs.practice',
            'arena_bot.cogs.housekeeping',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except commands.ExtensionError as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        guild_ids = Config.get_guild_ids()
        if not guild_ids:
            # Global sync can take up to an hour to propagate
            self.logger.info("Attempting to sync commands globally...")
            try:
                synced = await self.tree.sync()
                self.logger.info(f"Successfully synced {len(synced)} command(s) globally")
            except discord.HTTPException as e:
                self.logger.error(f"Failed to sync commands globally: {e}", exc_info=True)
            return

        self.logger.info(f"Attempting to sync commands to {len(guild_ids)} guild(s): {guild_ids}...")
        total_synced = 0
        for guild_id in guild_ids:
            try:
                guild = discord.Object(id=guild_id)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                self.logger.info(f"Successfully synced {len(synced)} command(s) to guild {guild_id}")

                if guild_id == guild_ids[0]:
                    for cmd in synced:
                        self.logger.info(f"  - {cmd.name}: {cmd.description}")

                total_synced += len(synced)
            except discord.Forbidden:
                self.logger.error(
                    f"Permission error syncing to guild {guild_id}. Ensure the bot has the "
                    f"'application.commands' scope and is in the guild.",
                    exc_info=True
                )
            except discord.HTTPException as e:
                self.logger.error(
                    f"HTTP error syncing to guild {guild_id}. Status: {e.status}, Response: {e.text}",
                    exc_info=True
                )

        self.logger.info(f"Multi-guild sync complete: {total_synced} total command instances deployed")

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(activity=discord.Game(name="Arena Duels | /duel-create"))

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'

        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
            error_embed = discord.Embed(
                title="❌ Permission Denied",
                description="This command is restricted to the bot owner.",
                color=discord.Color.red()
            )
        elif isinstance(error, app_commands.CommandOnCooldown):
            error_embed = discord.Embed(
                title=f"❌ Command is on cooldown. Try again in {error.retry_after:.2f} seconds.",
                color=discord.Color.red()
            )
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=True)
            error_embed = discord.Embed(
                title="❌ An unexpected error occurred",
                description="Something went wrong while processing your command. Please try again.",
                color=discord.Color.red()
            )

        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Arena Bot...")

        if self.db:
            await self.db.close()

        await super().close()


async def main():
    """Main entry point"""
    Config.validate()

    bot = ArenaBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await bot.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
