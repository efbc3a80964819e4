"""
Shared embed utilities for the arena duel bot.

Keeps duel, problem, rating and lobby displays consistent across cogs.
"""

import discord
from typing import List, Optional

from arena_bot.constants import UIConstants
from arena_bot.database.models import (
    Duel, DuelStatus, Entrant, Problem, Tournament, TournamentType, UserRating
)
from arena_bot.operations.duel_operations import DuelAnswer, DuelCompletion
from arena_bot.operations.skip_operations import SkipQuota
from arena_bot.utils.exceptions import ArenaException


_STATUS_COLORS = {
    DuelStatus.WAITING: discord.Color.orange(),
    DuelStatus.ACTIVE: discord.Color.blue(),
    DuelStatus.COMPLETED: discord.Color.green(),
    DuelStatus.CANCELLED: discord.Color.light_grey(),
}


def _mention(user_id: Optional[int]) -> str:
    return f"<@{user_id}>" if user_id else "*open*"


def build_duel_embed(duel: Duel, title: Optional[str] = None) -> discord.Embed:
    """Summary card for a single duel."""
    embed = discord.Embed(
        title=title or f"{UIConstants.SWORDS_EMOJI} Duel #{duel.id}",
        color=_STATUS_COLORS.get(duel.status, discord.Color.blue())
    )
    embed.add_field(name="Challenger", value=_mention(duel.challenger_id), inline=True)
    embed.add_field(name="Opponent", value=_mention(duel.opponent_id), inline=True)
    embed.add_field(name="Difficulty", value=str(duel.difficulty), inline=True)
    if duel.problem_id:
        embed.add_field(name="Problem", value=f"#{duel.problem_id}", inline=True)
    embed.add_field(name="Status", value=duel.status.value.title(), inline=True)
    if duel.tournament_id:
        embed.add_field(name="Tournament", value=f"#{duel.tournament_id}", inline=True)
    if duel.round_number:
        embed.add_field(name="Round", value=str(duel.round_number), inline=True)
    if duel.winner_id:
        embed.add_field(name="Winner", value=_mention(duel.winner_id), inline=True)
    return embed


def build_duel_list_embed(duels: List[Duel], title: str) -> discord.Embed:
    embed = discord.Embed(title=title, color=UIConstants.DEFAULT_EMBED_COLOR)
    if not duels:
        embed.description = "No duels to show."
        return embed

    lines = [
        f"**#{d.id}** {_mention(d.challenger_id)} vs {_mention(d.opponent_id)} "
        f"· difficulty {d.difficulty} · {d.status.value}"
        for d in duels
    ]
    embed.description = "\n".join(lines)
    return embed


def build_completion_embed(completion: DuelCompletion) -> discord.Embed:
    """Result card shown when a duel is settled or forfeited."""
    duel = completion.duel
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} Duel #{duel.id} Complete",
        color=UIConstants.SUCCESS_COLOR if completion.winner_id else UIConstants.ERROR_COLOR
    )

    def _line(user_id: int) -> str:
        line = (f"{_mention(user_id)}\n{completion.deltas[user_id]:+d} → "
                f"**{completion.ratings[user_id].rating}**")
        side = duel.side_of(user_id)
        seconds = getattr(duel, f"{side}_time_seconds") if side else None
        if seconds is not None:
            line += f"\n⏱️ {seconds:.1f}s"
        return line

    if completion.winner_id is None:
        embed.description = "Nobody solved it - both players lose."
        for user_id in duel.participants:
            embed.add_field(name="Player", value=_line(user_id), inline=True)
    else:
        embed.add_field(name="Winner", value=_line(completion.winner_id), inline=True)
        embed.add_field(name="Loser", value=_line(completion.loser_id), inline=True)

    if duel.tournament_id and not completion.counted_for_tournament:
        embed.set_footer(text="Tournament had already ended - tournament score unchanged.")
    return embed


def build_answer_embed(submission: DuelAnswer) -> discord.Embed:
    """Private receipt for one side's duel answer."""
    if submission.completion is None:
        description = f"Answer recorded in {submission.time_seconds:.1f}s. Waiting for your opponent."
    else:
        description = f"Answer recorded in {submission.time_seconds:.1f}s. The duel is settled."
    return discord.Embed(
        title="✅ Correct!" if submission.correct else "❌ Not quite",
        description=description,
        color=UIConstants.SUCCESS_COLOR if submission.correct else UIConstants.ERROR_COLOR
    )


def build_problem_embed(problem: Problem) -> discord.Embed:
    """Problem statement card; never includes the answer key."""
    embed = discord.Embed(
        title=f"🧩 #{problem.id} {problem.title}",
        description=problem.statement,
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    embed.add_field(name="Difficulty", value=str(problem.difficulty), inline=True)
    if problem.category_id is not None:
        embed.add_field(name="Category", value=str(problem.category_id), inline=True)
    embed.add_field(name="Answer format", value=problem.answer_type.value, inline=True)
    return embed

def build_rating_embed(user: discord.abc.User, rating: Optional[UserRating], starting_rating: int) -> discord.Embed:
    embed = discord.Embed(
        title=f"📊 Rating: {user.display_name}",
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    embed.add_field(name="Rating", value=f"{rating.rating if rating else starting_rating:,}", inline=True)
    embed.add_field(name="Points", value=f"{rating.total_points if rating else 0:,}", inline=True)
    embed.add_field(name="Solved", value=f"{rating.problems_solved if rating else 0:,}", inline=True)
    return embed


def build_skip_embed(category_id: int, quota: SkipQuota) -> discord.Embed:
    embed = discord.Embed(
        title=f"⏭️ Skips for category {category_id}",
        description=f"Used **{quota.skip_count}** today · **{quota.remaining}** remaining",
        color=UIConstants.DEFAULT_EMBED_COLOR if quota.can_skip else UIConstants.ERROR_COLOR
    )
    return embed


def build_lobby_embed(tournament: Tournament, entrants: List[Entrant]) -> discord.Embed:
    """Tournament standings, best score first."""
    description = f"Status: **{tournament.status.value.title()}** · {len(entrants)} entrant(s)"
    if tournament.tournament_type == TournamentType.SWISS:
        description += f" · round {tournament.current_round}/{tournament.total_rounds}"
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} {tournament.name}",
        description=description,
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    lines = []
    for position, entrant in enumerate(entrants[:20], start=1):
        fire = f" {UIConstants.FIRE_EMOJI}" if entrant.is_on_fire else ""
        lines.append(
            f"**{position}.** {_mention(entrant.user_id)} · {entrant.score} pts "
            f"({entrant.wins}W/{entrant.losses}L) · {entrant.status.value}{fire}"
        )
    if lines:
        embed.add_field(name="Standings", value="\n".join(lines), inline=False)
    return embed


def build_error_embed(error: ArenaException) -> discord.Embed:
    return discord.Embed(
        title="Request Rejected",
        description=error.user_message,
        color=UIConstants.ERROR_COLOR
    )
