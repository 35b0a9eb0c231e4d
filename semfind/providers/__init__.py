"""Feature-extraction pipelines."""

from .local import LocalEmbeddingPipeline, register_model

__all__ = ["LocalEmbeddingPipeline", "register_model"]
