"""Service layer — unit synthesis, verification, graph reports.

Services may import from domain, config and infrastructure layers.
They must never import from commands or output.
"""
