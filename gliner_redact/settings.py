from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GLR_", env_file=".env", extra="ignore", protected_namespaces=())

    service_name: str = "gliner-redact"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    model_name: str = "knowledgator/gliner-pii-edge-v1.0"
    model_dir: str = "models"
    onnx_file: str = "onnx/model_quint8.onnx"

    anonymization_mode: Literal["model", "regex", "hybrid"] = "model"
    # None selects the default of the detected model generation.
    threshold: float | None = None
    # Comma-separated ("en,nl") or a JSON list.
    regex_locales: Annotated[list[str], NoDecode] = ["en", "nl"]
    patterns_path: str | None = None

    # Word ceilings are lower in span mode: its sequence budget is shorter.
    token_mode_max_words: int = 500
    token_mode_window_words: int = 400
    span_mode_max_words: int = 300
    span_mode_window_words: int = 250
    chunk_overlap_words: int = 50

    intra_op_num_threads: int = 4
    inter_op_num_threads: int = 1

    @field_validator("regex_locales", mode="before")
    @classmethod
    def _split_locales(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        raw = value.strip()
        if raw.startswith("["):
            return json.loads(raw)
        return [item.strip() for item in raw.split(",") if item.strip()]


settings = Settings()
