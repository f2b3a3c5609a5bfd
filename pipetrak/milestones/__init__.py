"""
Milestone engine core: completion calculation, state transitions, update
validation and field weld synchronization.

Q4 2026: Tagged update values and pure backdating policy.
"""
