"""
API routes.

- picks: create, read, edit, delete, flag, dispute, ledger proof, fraud
- creators: performance stats and transparency score
- odds: conversions and parlay pricing
- grading: admin grading triggers
"""
