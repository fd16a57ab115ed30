"""
campaign-lab - A/B experiment core for the campaign console.

Modules:
- experiments: config transitions, traffic allocation, sample planning, live stats
- gateway: boundary to the generative-AI service with deterministic fallbacks
"""

__version__ = "1.0.0"
