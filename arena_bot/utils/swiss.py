"""
Swiss-system pairing.

Players arrive sorted by standing (score descending). Each unpaired player
is matched with the next unpaired player below them that they have not met
yet, which keeps pairs inside a score group where possible and lets a
leftover drop into the group below. With an odd field the lowest-standing
player without a bye sits the round out.
"""

from typing import Collection, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from arena_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


def matchup(first: int, second: int) -> FrozenSet[int]:
    """Order-independent key for a pair of players"""
    return frozenset((first, second))


def pick_bye(players: Sequence[int], had_bye: Collection[int] = ()) -> Optional[int]:
    """Lowest-standing player who has not had a bye yet (or the last player if all have)"""
    if not players:
        return None
    for player in reversed(players):
        if player not in had_bye:
            return player
    return players[-1]


def swiss_pairings(
    players: Sequence[int],
    previous: Iterable[FrozenSet[int]] = (),
    had_bye: Collection[int] = ()
) -> Tuple[List[Tuple[int, int]], Optional[int]]:
    """
    Pair one Swiss round.

    Args:
        players: User ids in standing order, best first
        previous: Matchups already played in earlier rounds
        had_bye: Players who already received a bye

    Returns:
        Tuple of (pairs, bye); bye is None for an even field
    """
    played: Set[FrozenSet[int]] = set(previous)
    unpaired = list(players)

    bye = None
    if len(unpaired) % 2:
        bye = pick_bye(unpaired, had_bye)
        unpaired.remove(bye)

    pairs: List[Tuple[int, int]] = []
    stranded: List[int] = []
    while unpaired:
        player = unpaired.pop(0)
        partner = next((other for other in unpaired if matchup(player, other) not in played), None)
        if partner is None:
            stranded.append(player)
            continue
        unpaired.remove(partner)
        pairs.append((player, partner))

    if stranded:
        # Everyone left has already met; they sit out without a point
        logger.warning(f"No fresh opponent for player(s) {stranded}, sitting out this round")

    return pairs, bye
