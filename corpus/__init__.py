"""Backend package: DB models, pipelines, APIs.

This package covers contributor intake, recording moderation, duplicate
cleanup and contribution statistics for a crowdsourced speech corpus.
"""
