"""Configuration — Layerfile models, discovery, settings, logging.

Depends on stdlib, pydantic, pydantic-settings, structlog and the domain
layer. It must never import from infrastructure, services, or commands.
"""
