"""Local feature-extraction pipeline backed by fastembed."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Iterator, Sequence

import numpy as np

from ..config import DEFAULT_BATCH_SIZE, DEFAULT_MODEL, local_model_dir
from ..errors import PipelineError
from ..text import Messages

logger = logging.getLogger(__name__)


def _load_fastembed():
    try:
        from fastembed import TextEmbedding
    except ImportError as exc:
        raise PipelineError(Messages.ERROR_LOCAL_DEP_MISSING) from exc
    return TextEmbedding


def resolve_fastembed_cache_dir(*, create: bool = True) -> Path:
    """Return the directory local models are downloaded into."""
    cache_dir = local_model_dir()
    if create:
        cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


_CUSTOM_TEXT_MODELS: dict[str, dict[str, object]] = {
    "intfloat/multilingual-e5-small": {
        "model": "intfloat/multilingual-e5-small",
        "pooling": "MEAN",
        "normalization": True,
        "hf": "intfloat/multilingual-e5-small",
        "dim": 384,
        "model_file": "onnx/model.onnx",
        "description": "Multilingual E5 model for cross-lingual retrieval",
        "license": "MIT",
        "size_in_gb": 0.12,
    },
    "xenova/all-minilm-l6-v2": {
        "model": "Xenova/all-MiniLM-L6-v2",
        "pooling": "MEAN",
        "normalization": True,
        "hf": "Xenova/all-MiniLM-L6-v2",
        "dim": 384,
        "model_file": "onnx/model.onnx",
        "description": "Sentence embeddings with mean pooling",
        "license": "Apache-2.0",
        "size_in_gb": 0.09,
    },
}


def register_model(
    model: str,
    *,
    hf: str | None = None,
    dim: int,
    pooling: str = "MEAN",
    normalization: bool = True,
    model_file: str = "onnx/model.onnx",
    description: str = "",
    license: str = "",
    size_in_gb: float = 0.0,
) -> None:
    """Make a Hugging Face ONNX model known to :class:`LocalEmbeddingPipeline`.

    ``pooling`` names a fastembed ``PoolingType`` member (``MEAN``, ``CLS``,
    ``DISABLED``); ``normalization`` asks fastembed to L2-normalize outputs.
    """

    _CUSTOM_TEXT_MODELS[model.strip().lower()] = {
        "model": model,
        "pooling": pooling.upper(),
        "normalization": bool(normalization),
        "hf": hf or model,
        "dim": int(dim),
        "model_file": model_file,
        "description": description,
        "license": license,
        "size_in_gb": float(size_in_gb),
    }


def custom_model_dimension(model_name: str) -> int | None:
    spec = _CUSTOM_TEXT_MODELS.get(model_name.strip().lower())
    return int(spec["dim"]) if spec else None


def _listed_model_dimension(text_embedding_cls, model_name: str) -> int | None:
    list_models = getattr(text_embedding_cls, "list_supported_models", None)
    if list_models is None:
        return None
    target = model_name.strip().lower()
    for description in list_models():
        if isinstance(description, Mapping):
            name, dim = description.get("model"), description.get("dim")
        else:
            name, dim = getattr(description, "model", None), getattr(description, "dim", None)
        if name and str(name).lower() == target and dim:
            return int(dim)
    return None


def _is_unsupported_model_error(exc: Exception) -> bool:
    return isinstance(exc, ValueError) and "not supported in TextEmbedding" in str(exc)


def _register_custom_model(text_embedding_cls, model_name: str) -> bool:
    spec = _CUSTOM_TEXT_MODELS.get(model_name.strip().lower())
    if not spec:
        return False
    try:
        from fastembed.common.model_description import ModelSource, PoolingType
    except ImportError as exc:
        raise PipelineError(
            Messages.ERROR_LOCAL_MODEL_LOAD.format(model=model_name, reason=str(exc))
        ) from exc
    try:
        text_embedding_cls.add_custom_model(
            model=spec["model"],
            pooling=getattr(PoolingType, str(spec["pooling"])),
            normalization=bool(spec["normalization"]),
            sources=ModelSource(hf=str(spec["hf"])),
            dim=int(spec["dim"]),
            model_file=str(spec["model_file"]),
            description=str(spec["description"]),
            license=str(spec["license"]),
            size_in_gb=float(spec["size_in_gb"]),
        )
    except ValueError as exc:
        if "already registered" not in str(exc).lower():
            raise
    return True


class LocalEmbeddingPipeline:
    """Sentence embeddings computed on this machine; no text leaves the process."""

    def __init__(
        self,
        *,
        model_name: str = DEFAULT_MODEL,
        dimension: int | None = None,
        batch_size: int | None = DEFAULT_BATCH_SIZE,
        cuda: bool = False,
    ) -> None:
        self.model_name = model_name
        self.batch_size = batch_size if batch_size and batch_size > 0 else None
        self.cuda = bool(cuda)
        TextEmbedding = _load_fastembed()
        cache_dir = resolve_fastembed_cache_dir()
        logger.debug("Loading local model %s into %s", model_name, cache_dir)
        try:
            self._model = self._create_model(TextEmbedding, cache_dir)
        except Exception as exc:
            if _is_unsupported_model_error(exc) and _register_custom_model(
                TextEmbedding, model_name
            ):
                try:
                    self._model = self._create_model(TextEmbedding, cache_dir)
                except Exception as retry_exc:
                    raise PipelineError(
                        Messages.ERROR_LOCAL_MODEL_LOAD.format(
                            model=model_name, reason=str(retry_exc)
                        )
                    ) from retry_exc
            else:
                raise PipelineError(
                    Messages.ERROR_LOCAL_MODEL_LOAD.format(model=model_name, reason=str(exc))
                ) from exc
        self.dimension = int(dimension) if dimension else self._model_dimension(TextEmbedding)

    def _model_dimension(self, text_embedding_cls) -> int:
        """Width of the loaded model: registry first, then one sample embedding."""
        known = custom_model_dimension(self.model_name) or _listed_model_dimension(
            text_embedding_cls, self.model_name
        )
        if known:
            return known
        try:
            sample = next(iter(self._model.embed(["dimension sample"])))
        except Exception as exc:
            raise PipelineError(
                Messages.ERROR_LOCAL_MODEL_LOAD.format(model=self.model_name, reason=str(exc))
            ) from exc
        return int(np.asarray(sample).size)

    def _create_model(self, text_embedding_cls, cache_dir: Path):
        return text_embedding_cls(
            model_name=self.model_name,
            cache_dir=str(cache_dir),
            cuda=self.cuda,
        )

    def extract(self, texts: Sequence[str]) -> np.ndarray:
        """Embed *texts* and return a flat ``len(texts) * dimension`` float32 buffer."""

        if not texts:
            return np.empty(0, dtype=np.float32)
        vectors: list[np.ndarray] = []
        for chunk in _chunk(texts, self.batch_size):
            try:
                for embedding in self._model.embed(list(chunk)):
                    vectors.append(np.asarray(embedding, dtype=np.float32))
            except Exception as exc:
                raise PipelineError(
                    Messages.ERROR_LOCAL_MODEL_EMBED.format(reason=str(exc))
                ) from exc
        if not vectors:
            raise PipelineError(Messages.ERROR_NO_EMBEDDINGS)
        return _l2_normalize(np.vstack(vectors)).ravel()


def _l2_normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (matrix / norms).astype(np.float32, copy=False)


def _chunk(items: Sequence[str], size: int | None) -> Iterator[Sequence[str]]:
    if size is None or size <= 0:
        yield items
        return
    for idx in range(0, len(items), size):
        yield items[idx : idx + size]
