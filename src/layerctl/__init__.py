"""layerctl — declare and verify internal layer dependencies in a Rust crate."""

__version__ = "0.3.0"
