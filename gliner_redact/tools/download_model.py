from __future__ import annotations

import argparse
import hashlib
import json
import shutil
from datetime import UTC, datetime
from pathlib import Path

from gliner_redact.model_assets import CONFIG_FILENAME, MODEL_FILENAME, TOKENIZER_FILENAME, gliner_local_dir
from gliner_redact.settings import settings


def _download_hub_file(*, model_name: str, filename: str) -> Path:
    try:
        from huggingface_hub import hf_hub_download
    except Exception as exc:
        raise RuntimeError(
            "huggingface_hub is required. Install the download extra (for example: `pip install .[download]`)."
        ) from exc

    return Path(hf_hub_download(repo_id=model_name, filename=filename))


def _sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(1024 * 1024)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def run(output_dir: str, model_name: str, onnx_file: str) -> int:
    root = Path(output_dir).expanduser().resolve()
    local_dir = gliner_local_dir(root, model_name)
    local_dir.mkdir(parents=True, exist_ok=True)

    # Hub file -> flat name expected by the directory model store.
    wanted = {
        onnx_file: MODEL_FILENAME,
        TOKENIZER_FILENAME: TOKENIZER_FILENAME,
        CONFIG_FILENAME: CONFIG_FILENAME,
    }
    files: dict[str, dict[str, str]] = {}
    for hub_filename, local_name in wanted.items():
        source = _download_hub_file(model_name=model_name, filename=hub_filename)
        destination = local_dir / local_name
        shutil.copy2(source, destination)
        files[local_name] = {"source": hub_filename, "sha256": _sha256_file(destination)}
        print(f"[ok] {model_name}:{hub_filename} -> {destination}")

    manifest = {
        "generated_at_utc": datetime.now(tz=UTC).isoformat(),
        "model_name": model_name,
        "path": str(local_dir),
        "files": files,
    }
    manifest_path = local_dir / "manifest.json"
    manifest_path.write_text(json.dumps(manifest, ensure_ascii=False, indent=2), encoding="utf-8")
    print(f"[ok] manifest -> {manifest_path}")
    return 0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Download a GLiNER ONNX model into the local model directory.")
    parser.add_argument("--output-dir", default=settings.model_dir, help="Directory to store models")
    parser.add_argument("--model-name", default=settings.model_name, help="Hugging Face repo id of the GLiNER model")
    parser.add_argument("--onnx-file", default=settings.onnx_file, help="ONNX export inside the repo")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    return run(output_dir=args.output_dir, model_name=args.model_name, onnx_file=args.onnx_file)


if __name__ == "__main__":
    raise SystemExit(main())
