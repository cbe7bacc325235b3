from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MODEL_FILENAME = "model.onnx"
TOKENIZER_FILENAME = "tokenizer.json"
CONFIG_FILENAME = "gliner_config.json"
REQUIRED_FILENAMES = (MODEL_FILENAME, TOKENIZER_FILENAME, CONFIG_FILENAME)


@dataclass(slots=True)
class ModelFiles:
    model_bytes: bytes
    tokenizer_description: dict[str, Any]
    model_config: dict[str, Any] = field(default_factory=dict)


class ModelFileProvider(ABC):
    @abstractmethod
    def load_model_files(self) -> ModelFiles | None:
        raise NotImplementedError

    @abstractmethod
    def is_available(self) -> bool:
        raise NotImplementedError


class DirectoryModelStore(ModelFileProvider):
    """Model files laid out flat in one directory; all three must be present."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def _paths(self) -> list[Path]:
        return [self.root / name for name in REQUIRED_FILENAMES]

    def is_available(self) -> bool:
        return all(path.is_file() for path in self._paths())

    def load_model_files(self) -> ModelFiles | None:
        missing = [path.name for path in self._paths() if not path.is_file()]
        if missing:
            logger.warning("model files missing in %s: %s", self.root, ", ".join(missing))
            return None

        try:
            tokenizer_description = json.loads((self.root / TOKENIZER_FILENAME).read_text(encoding="utf-8"))
            model_config = json.loads((self.root / CONFIG_FILENAME).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("unable to read model metadata in %s: %s", self.root, exc)
            return None
        if not isinstance(tokenizer_description, dict) or not isinstance(model_config, dict):
            logger.warning("model metadata in %s is not a JSON object", self.root)
            return None

        return ModelFiles(
            model_bytes=(self.root / MODEL_FILENAME).read_bytes(),
            tokenizer_description=tokenizer_description,
            model_config=model_config,
        )


def gliner_repo_dirname(model_name: str) -> str:
    return model_name.replace("/", "__")


def gliner_local_dir(model_dir: str | Path, model_name: str) -> Path:
    return Path(model_dir) / "gliner" / gliner_repo_dirname(model_name)


def resolve_model_store(model_dir: str | Path, model_name: str) -> DirectoryModelStore:
    # An explicit directory path wins over the hub-id layout.
    explicit = Path(model_name).expanduser()
    if explicit.is_dir():
        return DirectoryModelStore(explicit)
    return DirectoryModelStore(gliner_local_dir(model_dir, model_name))
