"""
PipeTrak milestone completion and bulk-update engine.
"""
