"""
Services for the pick integrity engine.

- odds_math: American/decimal conversion and parlay pricing
- ledger_service: per-pick hash chains
- pick_lifecycle: create/edit/delete/grade with the game-start lock
- fraud_service: fraud heuristics
- transparency_service: creator transparency score
- creator_stats_service: creator aggregates and performance stats
- grading_service: batch grading job
- sports_data, markets, circuit_breaker: sports data collaborator
"""
