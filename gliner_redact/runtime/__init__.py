from gliner_redact.runtime.gliner_runtime import (
    GlinerRuntime,
    InferenceMode,
    OnnxGlinerRuntime,
    RuntimeState,
    build_gliner_runtime,
    resolve_inference_mode,
)
from gliner_redact.runtime.tokenizer import build_tokenizer

__all__ = [
    "GlinerRuntime",
    "InferenceMode",
    "OnnxGlinerRuntime",
    "RuntimeState",
    "build_gliner_runtime",
    "build_tokenizer",
    "resolve_inference_mode",
]
