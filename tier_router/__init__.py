"""
Tier Router.

Routes tasks to cost/quality tiers of a model backend while tracking
spend against a monthly budget and learning from session outcomes.
"""

__version__ = "0.1.0"
