"""Composition root for the data lifecycle engine.

Use: from governance.bootstrap import build_container
"""
