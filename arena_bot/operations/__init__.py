"""
Operations Layer

Business logic for the arena duel bot. Each module owns one concern and
composes database access into complete, concurrency-safe workflows:

- RatingOperations: rating deltas, practice attempts
- SkipOperations: daily per-category skip quota
- DuelOperations: 1v1 duel lifecycle
- ArenaOperations: arena pairing and arena results
- TournamentOperations: tournament lifecycle, lobby and scheduler tick
"""
