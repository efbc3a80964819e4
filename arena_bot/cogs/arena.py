"""
Arena Tournament Commands

Scheduling arena and Swiss tournaments, entering and leaving, standings,
and manual pairing triggers. Arena pairing also runs on the housekeeping
tick and right after every join; Swiss rounds open on the tick once the
previous round is done.
"""

from datetime import timedelta, timezone
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from arena_bot.config import Config
from arena_bot.database.models import EntrantStatus, TournamentType
from arena_bot.operations.arena_operations import ArenaOperations
from arena_bot.operations.swiss_operations import SwissOperations
from arena_bot.operations.tournament_operations import TournamentOperations
from arena_bot.utils.embeds import build_error_embed, build_lobby_embed
from arena_bot.utils.exceptions import ArenaException
from arena_bot.utils.logger import setup_logger
from arena_bot.utils.time_utils import utc_now

logger = setup_logger(__name__)


def is_owner(interaction: discord.Interaction) -> bool:
    return interaction.user.id == Config.OWNER_DISCORD_ID


class ArenaCog(commands.Cog):
    """Arena tournament lobby commands"""

    def __init__(self, bot):
        self.bot = bot
        self.tournament_ops: TournamentOperations = bot.tournament_ops
        self.arena_ops: ArenaOperations = bot.arena_ops
        self.swiss_ops: SwissOperations = bot.swiss_ops
        self.logger = logger

    async def _reject(self, interaction: discord.Interaction, error: ArenaException):
        self.logger.info(f"Rejected arena command for {interaction.user.id}: {error}")
        if interaction.response.is_done():
            await interaction.followup.send(embed=build_error_embed(error), ephemeral=True)
        else:
            await interaction.response.send_message(embed=build_error_embed(error), ephemeral=True)

    @app_commands.command(name="tournament-create", description="Schedule a new tournament")
    @app_commands.describe(
        name="Tournament name",
        starts_in="Minutes from now until the tournament starts",
        duration="Length of the tournament in minutes",
        tournament_format="Arena (continuous pairing) or Swiss (fixed rounds)",
        rounds="Number of Swiss rounds"
    )
    @app_commands.rename(tournament_format="format")
    @app_commands.choices(tournament_format=[
        app_commands.Choice(name="Arena", value=TournamentType.ARENA.value),
        app_commands.Choice(name="Swiss", value=TournamentType.SWISS.value),
    ])
    async def tournament_create(
        self,
        interaction: discord.Interaction,
        name: app_commands.Range[str, 1, 100],
        starts_in: app_commands.Range[int, 0, 10080] = 0,
        duration: Optional[app_commands.Range[int, 1, 1440]] = None,
        tournament_format: str = TournamentType.ARENA.value,
        rounds: Optional[app_commands.Range[int, 1, 20]] = None
    ):
        try:
            tournament = await self.tournament_ops.create_tournament(
                name=name,
                start_time=utc_now() + timedelta(minutes=starts_in),
                duration_minutes=duration or Config.DEFAULT_TOURNAMENT_MINUTES,
                actor_id=interaction.user.id,
                tournament_type=TournamentType(tournament_format),
                total_rounds=rounds
            )
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        if tournament.tournament_type == TournamentType.SWISS:
            join_hint = (f"Swiss, {tournament.total_rounds} rounds. "
                         f"Join with `/arena-join {tournament.id}` before or during the event.")
        else:
            join_hint = f"Join with `/arena-join {tournament.id}` once it starts."

        embed = discord.Embed(
            title=f"🏆 {tournament.name} (#{tournament.id})",
            description=(
                f"Starts <t:{int(tournament.start_time.replace(tzinfo=timezone.utc).timestamp())}:R> "
                f"and runs for {tournament.duration_minutes} minutes.\n"
                f"{join_hint}"
            ),
            color=discord.Color.gold()
        )
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="tournament-start", description="[Owner] Start a scheduled tournament now")
    @app_commands.check(is_owner)
    async def tournament_start(self, interaction: discord.Interaction, tournament_id: int):
        try:
            tournament = await self.tournament_ops.start_tournament(tournament_id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(
            f"⚔️ **{tournament.name}** has started! Use `/arena-join {tournament.id}` to enter the arena."
        )

    @app_commands.command(name="tournament-end", description="[Owner] End an active tournament now")
    @app_commands.check(is_owner)
    async def tournament_end(self, interaction: discord.Interaction, tournament_id: int):
        await interaction.response.defer()
        try:
            tournament = await self.tournament_ops.end_tournament(tournament_id)
            entrants = await self.tournament_ops.list_entrants(tournament_id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.followup.send(embed=build_lobby_embed(tournament, entrants))

    @app_commands.command(name="arena-join", description="Enter a tournament")
    async def arena_join(self, interaction: discord.Interaction, tournament_id: int):
        await interaction.response.defer(ephemeral=True)
        try:
            entrant = await self.tournament_ops.join_tournament(tournament_id, interaction.user.id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        if entrant.status == EntrantStatus.PAIRED and entrant.duel_id:
            message = (f"⚔️ You're in! You've been paired - duel **#{entrant.duel_id}** is active. "
                       f"See the problem with `/duel-problem {entrant.duel_id}` and answer with "
                       f"`/duel-answer {entrant.duel_id}`.")
        elif entrant.arena_id is None:
            message = "⏳ You're entered. You'll be paired when the next Swiss round opens."
        else:
            message = "⏳ You're in the lobby. You'll be paired as soon as another player is waiting."
        await interaction.followup.send(message, ephemeral=True)

    @app_commands.command(name="arena-withdraw", description="Leave the arena lobby")
    async def arena_withdraw(self, interaction: discord.Interaction, tournament_id: int):
        try:
            await self.tournament_ops.withdraw(tournament_id, interaction.user.id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message("👋 You left the arena.", ephemeral=True)

    @app_commands.command(name="arena-pair", description="Pair everyone waiting in a tournament's arena")
    async def arena_pair(self, interaction: discord.Interaction, tournament_id: int):
        await interaction.response.defer(ephemeral=True)
        try:
            created = await self.arena_ops.pair_arena(tournament_id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.followup.send(f"Created {created} duel(s).", ephemeral=True)

    @app_commands.command(name="swiss-round", description="[Owner] Open the next Swiss round now")
    @app_commands.check(is_owner)
    async def swiss_round(self, interaction: discord.Interaction, tournament_id: int):
        await interaction.response.defer()
        try:
            outcome = await self.swiss_ops.generate_round(tournament_id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        message = f"🔔 Round {outcome.round_number}: {len(outcome.duel_ids)} duel(s) created."
        if outcome.bye_user_id is not None:
            message += f" <@{outcome.bye_user_id}> receives a bye."
        await interaction.followup.send(message)

    @app_commands.command(name="arena-standings", description="Show a tournament's standings")
    async def arena_standings(self, interaction: discord.Interaction, tournament_id: int):
        try:
            tournament = await self.tournament_ops.get_tournament(tournament_id)
            entrants = await self.tournament_ops.list_entrants(tournament_id)
        except ArenaException as e:
            await self._reject(interaction, e)
            return

        await interaction.response.send_message(embed=build_lobby_embed(tournament, entrants))


async def setup(bot):
    await bot.add_cog(ArenaCog(bot))
