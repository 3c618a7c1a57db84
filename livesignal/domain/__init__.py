"""
Domain layer containing the signaling and stream lifecycle logic.

Submodules:
- live: Live streaming domain logic (signaling channel, peer sessions, controller).
- utils: Domain-specific utilities (e.g., ID generation).
"""
