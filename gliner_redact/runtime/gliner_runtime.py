from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError

from gliner_redact.config import ModelConfig
from gliner_redact.errors import ConfigurationError, ExecutionError, ModelUnavailableError
from gliner_redact.labels import PII_LABELS
from gliner_redact.model_assets import ModelFileProvider, resolve_model_store
from gliner_redact.models.entities import Entity
from gliner_redact.runtime.decoder import (
    DEFAULT_SPAN_THRESHOLD,
    DEFAULT_TOKEN_THRESHOLD,
    decode_span_level,
    decode_token_level,
)
from gliner_redact.runtime.processor import build_span_batch, build_token_batch, split_words
from gliner_redact.runtime.session import (
    ExecutorOptions,
    OnnxSessionFactory,
    SessionFactory,
    TensorSession,
)
from gliner_redact.runtime.tokenizer import BaseTokenizer, build_tokenizer
from gliner_redact.runtime.word_chunking import chunk_words, merge_window_entities
from gliner_redact.settings import Settings

logger = logging.getLogger(__name__)

_SPAN_INPUT_NAMES = frozenset({"span_idx", "span_mask"})


class RuntimeState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class InferenceMode(str, Enum):
    TOKEN = "token"
    SPAN = "span"


def resolve_inference_mode(config: ModelConfig, input_names: Sequence[str]) -> InferenceMode:
    """Pick the decoding mode; the executor's declared inputs override the config."""
    declares_span_inputs = bool(_SPAN_INPUT_NAMES.intersection(input_names))
    if declares_span_inputs != config.is_span_mode:
        logger.warning(
            "gliner config span_mode=%s disagrees with session inputs (span inputs declared=%s); using %s mode",
            config.span_mode,
            declares_span_inputs,
            "span" if declares_span_inputs or config.is_span_mode else "token",
        )
    if config.is_span_mode or declares_span_inputs:
        return InferenceMode.SPAN
    return InferenceMode.TOKEN


@dataclass(frozen=True, slots=True)
class ChunkingPolicy:
    token_max_words: int = 500
    token_window_words: int = 400
    span_max_words: int = 300
    span_window_words: int = 250
    overlap_words: int = 50

    def limits(self, mode: InferenceMode) -> tuple[int, int]:
        if mode is InferenceMode.SPAN:
            return self.span_max_words, self.span_window_words
        return self.token_max_words, self.token_window_words


@dataclass(frozen=True, slots=True)
class _Loaded:
    tokenizer: BaseTokenizer
    config: ModelConfig
    session: TensorSession
    mode: InferenceMode


class GlinerRuntime(ABC):
    @abstractmethod
    def predict_entities(
        self,
        text: str,
        labels: Sequence[str] | None = None,
        threshold: float | None = None,
    ) -> list[Entity]:
        raise NotImplementedError

    @abstractmethod
    def ensure_ready(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_ready(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_available(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def load_error(self) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def dispose(self) -> None:
        raise NotImplementedError


class OnnxGlinerRuntime(GlinerRuntime):
    def __init__(
        self,
        provider: ModelFileProvider,
        session_factory: SessionFactory,
        executor_options: ExecutorOptions | None = None,
        chunking: ChunkingPolicy | None = None,
        default_labels: Sequence[str] = PII_LABELS,
    ) -> None:
        self._provider = provider
        self._session_factory = session_factory
        self._executor_options = executor_options or ExecutorOptions()
        self._chunking = chunking or ChunkingPolicy()
        self._default_labels = list(default_labels)
        self._lock = threading.Lock()
        self._state = RuntimeState.UNINITIALIZED
        self._loaded: _Loaded | None = None
        self._load_error: str | None = None

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def mode(self) -> InferenceMode | None:
        loaded = self._loaded
        return loaded.mode if loaded is not None else None

    @property
    def config(self) -> ModelConfig | None:
        loaded = self._loaded
        return loaded.config if loaded is not None else None

    def initialize(self) -> None:
        if self._state is RuntimeState.READY:
            return
        with self._lock:
            if self._state is RuntimeState.READY:
                return
            self._state = RuntimeState.INITIALIZING
            try:
                loaded = self._load()
            except ModelUnavailableError as exc:
                self._state = RuntimeState.UNINITIALIZED
                self._load_error = str(exc)
                logger.warning("gliner runtime unavailable: %s", exc)
                raise
            except Exception as exc:
                self._state = RuntimeState.UNINITIALIZED
                self._load_error = str(exc) or type(exc).__name__
                logger.exception("gliner runtime failed to load")
                raise
            self._loaded = loaded
            self._load_error = None
            self._state = RuntimeState.READY
            logger.info(
                "gliner runtime ready (mode=%s, span_mode=%s, max_width=%s)",
                loaded.mode.value,
                loaded.config.span_mode,
                loaded.config.max_width,
            )

    def _load(self) -> _Loaded:
        files = self._provider.load_model_files()
        if files is None:
            raise ModelUnavailableError("gliner model files are not available")

        tokenizer = build_tokenizer(files.tokenizer_description)
        try:
            config = ModelConfig.from_raw(files.model_config)
        except ValidationError as exc:
            raise ModelUnavailableError(f"invalid gliner_config.json: {exc}") from exc

        try:
            session = self._session_factory.create_session(files.model_bytes, self._executor_options)
        except ModelUnavailableError:
            raise
        except Exception as exc:
            raise ModelUnavailableError(f"unable to create executor session: {exc}") from exc

        mode = resolve_inference_mode(config, session.input_names)
        return _Loaded(tokenizer=tokenizer, config=config, session=session, mode=mode)

    def _require_loaded(self) -> _Loaded:
        loaded = self._loaded
        if loaded is None or self._state is not RuntimeState.READY:
            raise ConfigurationError(self._load_error or "gliner runtime is not initialized")
        return loaded

    def detect(
        self,
        text: str,
        labels: Sequence[str] | None = None,
        threshold: float | None = None,
    ) -> list[Entity]:
        self.initialize()
        loaded = self._require_loaded()
        if not text or not text.strip():
            return []

        entity_labels = list(labels) if labels else list(self._default_labels)
        if len(entity_labels) > loaded.config.max_types:
            logger.warning(
                "%d entity labels exceed the model's max_types=%d",
                len(entity_labels),
                loaded.config.max_types,
            )
        if threshold is None:
            threshold = DEFAULT_SPAN_THRESHOLD if loaded.mode is InferenceMode.SPAN else DEFAULT_TOKEN_THRESHOLD

        words = split_words(text)
        max_words, window_words = self._chunking.limits(loaded.mode)
        if len(words) <= max_words:
            return self._infer(loaded, text, entity_labels, threshold)

        windows = chunk_words(words, window_words=window_words, overlap_words=self._chunking.overlap_words)
        logger.debug("splitting %d words into %d windows", len(words), len(windows))
        window_entities: list[list[Entity]] = []
        for index, window in enumerate(windows):
            chunk = text[window.text_start : window.text_end]
            try:
                window_entities.append(self._infer(loaded, chunk, entity_labels, threshold))
            except ExecutionError as exc:
                raise ExecutionError(f"window {index}: {exc}", window_index=index) from exc
        return merge_window_entities(text=text, windows=windows, window_entities=window_entities)

    def predict_entities(
        self,
        text: str,
        labels: Sequence[str] | None = None,
        threshold: float | None = None,
    ) -> list[Entity]:
        return self.detect(text, labels=labels, threshold=threshold)

    def _infer(self, loaded: _Loaded, text: str, labels: list[str], threshold: float) -> list[Entity]:
        config = loaded.config
        if loaded.mode is InferenceMode.SPAN:
            batch = build_span_batch(
                [text],
                labels,
                loaded.tokenizer,
                max_width=config.max_width,
                ent_token=config.ent_token,
                sep_token=config.sep_token,
            )
        else:
            batch = build_token_batch(
                [text],
                labels,
                loaded.tokenizer,
                ent_token=config.ent_token,
                sep_token=config.sep_token,
            )

        declared = set(loaded.session.input_names)
        feeds = {name: value for name, value in batch.to_feeds().items() if name in declared}
        try:
            outputs = loaded.session.run(feeds)
        except ExecutionError:
            raise
        except Exception as exc:
            raise ExecutionError(f"executor run failed: {exc}") from exc
        if not outputs:
            raise ExecutionError("executor returned no outputs")

        output_names = list(loaded.session.output_names)
        if output_names and output_names[0] in outputs:
            logits = outputs[output_names[0]]
        else:
            logits = next(iter(outputs.values()))

        try:
            if loaded.mode is InferenceMode.SPAN:
                decoded = decode_span_level(logits, batch, labels, [text], threshold=threshold)
            else:
                decoded = decode_token_level(logits, batch, labels, [text], threshold=threshold)
        except ValueError as exc:
            raise ExecutionError(f"unexpected executor output: {exc}") from exc
        logger.debug("decoded %d entities from %d words", len(decoded[0]) if decoded else 0, len(batch.words[0]))
        return decoded[0] if decoded else []

    def ensure_ready(self) -> bool:
        try:
            self.initialize()
        except ModelUnavailableError:
            return False
        return True

    def is_ready(self) -> bool:
        return self._state is RuntimeState.READY

    def is_available(self) -> bool:
        return self.is_ready() or self._provider.is_available()

    def load_error(self) -> str | None:
        return self._load_error

    def dispose(self) -> None:
        with self._lock:
            loaded = self._loaded
            self._loaded = None
            self._state = RuntimeState.UNINITIALIZED
        if loaded is not None:
            loaded.session.release()
            logger.info("gliner runtime disposed")


def build_gliner_runtime(
    settings: Settings,
    provider: ModelFileProvider | None = None,
    session_factory: SessionFactory | None = None,
) -> OnnxGlinerRuntime:
    return OnnxGlinerRuntime(
        provider=provider or resolve_model_store(settings.model_dir, settings.model_name),
        session_factory=session_factory or OnnxSessionFactory(),
        executor_options=ExecutorOptions(
            intra_op_num_threads=settings.intra_op_num_threads,
            inter_op_num_threads=settings.inter_op_num_threads,
        ),
        chunking=ChunkingPolicy(
            token_max_words=settings.token_mode_max_words,
            token_window_words=settings.token_mode_window_words,
            span_max_words=settings.span_mode_max_words,
            span_window_words=settings.span_mode_window_words,
            overlap_words=settings.chunk_overlap_words,
        ),
    )
