"""Infrastructure layer — Rust syntax, Cargo manifests, scratch units, toolchain.

This layer depends on stdlib, third-party libs (tree-sitter, tomli-w) and
the domain layer. It must never import from services, commands, or output.
The service layer bridges between domain models and infrastructure.
"""
