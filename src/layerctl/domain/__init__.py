"""Domain layer — module tree types, layer graph, verdicts, classification.

This layer depends only on stdlib, pydantic and networkx.
It must never import from services, infrastructure, commands, or config.
"""
