"""Governance domain: ports consumed by the data lifecycle engine."""
