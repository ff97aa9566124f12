"""Pipelines for intake, moderation, deduplication and statistics.

Each step takes an ``AsyncSession`` (and object storage where audio is
involved) so it can run from the API or from a maintenance script alike.
"""
