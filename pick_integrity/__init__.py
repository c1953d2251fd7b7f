"""Pick Integrity API: pick locking, audit ledger, fraud heuristics and grading."""

__version__ = "1.0.0"
