"""State/store layer.

Persistence collaborators for vehicle state, location history and the
road grid, plus the pure policy helpers that interpret them.
"""
