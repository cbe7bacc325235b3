from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from gliner_redact.errors import ConfigurationError, ExecutionError, ModelUnavailableError

logger = logging.getLogger(__name__)

_ONNX_INPUT_DTYPES: dict[str, Any] = {
    "tensor(int64)": np.int64,
    "tensor(int32)": np.int32,
    "tensor(bool)": np.bool_,
    "tensor(float)": np.float32,
}


@dataclass(frozen=True, slots=True)
class ExecutorOptions:
    intra_op_num_threads: int = 4
    inter_op_num_threads: int = 1


class TensorSession(Protocol):
    @property
    def input_names(self) -> Sequence[str]: ...

    @property
    def output_names(self) -> Sequence[str]: ...

    def run(self, feeds: Mapping[str, np.ndarray]) -> dict[str, np.ndarray]: ...

    def release(self) -> None: ...


class SessionFactory(Protocol):
    def create_session(self, model_bytes: bytes, options: ExecutorOptions) -> TensorSession: ...


class OnnxTensorSession:
    def __init__(self, session: Any) -> None:
        self._session: Any | None = session
        inputs = session.get_inputs()
        self._input_names = [item.name for item in inputs]
        self._input_dtypes = {item.name: _ONNX_INPUT_DTYPES.get(str(item.type)) for item in inputs}
        self._output_names = [item.name for item in session.get_outputs()]

    @property
    def input_names(self) -> Sequence[str]:
        return list(self._input_names)

    @property
    def output_names(self) -> Sequence[str]:
        return list(self._output_names)

    def run(self, feeds: Mapping[str, np.ndarray]) -> dict[str, np.ndarray]:
        if self._session is None:
            raise ConfigurationError("onnx session has been released")
        prepared: dict[str, np.ndarray] = {}
        for name, value in feeds.items():
            dtype = self._input_dtypes.get(name)
            # Exported graphs disagree on span_mask (bool vs int64); follow the declared type.
            prepared[name] = value.astype(dtype) if dtype is not None and value.dtype != dtype else value
        try:
            outputs = self._session.run(self._output_names, prepared)
        except Exception as exc:
            raise ExecutionError(f"onnx session run failed: {exc}") from exc
        return dict(zip(self._output_names, outputs, strict=False))

    def release(self) -> None:
        self._session = None


class OnnxSessionFactory:
    def __init__(self, providers: Sequence[str] | None = None) -> None:
        self._providers = list(providers) if providers else ["CPUExecutionProvider"]

    def create_session(self, model_bytes: bytes, options: ExecutorOptions) -> OnnxTensorSession:
        import onnxruntime as ort

        sess_options = ort.SessionOptions()
        sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        sess_options.intra_op_num_threads = max(1, int(options.intra_op_num_threads))
        sess_options.inter_op_num_threads = max(1, int(options.inter_op_num_threads))
        sess_options.log_severity_level = 3

        available = set(ort.get_available_providers())
        providers = [provider for provider in self._providers if provider in available] or ["CPUExecutionProvider"]
        try:
            session = ort.InferenceSession(model_bytes, sess_options, providers=providers)
        except Exception as exc:
            raise ModelUnavailableError(f"unable to create onnx session: {exc}") from exc
        logger.info("onnx session created (providers=%s)", ",".join(providers))
        return OnnxTensorSession(session)
