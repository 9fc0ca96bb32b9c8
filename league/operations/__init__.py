"""
Operations Layer

Pure engines that the services compose with the record store. Nothing in
this package performs I/O.

- SequentialReconciler: chronological replay of the match history
- BracketSeeder: rating-ordered slot placement with byes
- BracketRoundGenerator: round construction and winner advancement
"""
