"""
Core modules for Tier Router.

This package contains the tier policy, usage ledger, session memory,
budget evaluation and the dispatcher that ties them together.
"""
