"""Per-model config.json and onnxruntime session options."""
import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AsrConfig:
    """Optional model settings; absent fields fall back to model-family defaults."""
    model_type: Optional[str] = None
    features_size: Optional[int] = None
    subsampling_factor: Optional[int] = None
    max_tokens_per_step: Optional[int] = None

    def __post_init__(self):
        if self.model_type is not None and not isinstance(self.model_type, str):
            raise ValueError(f"model_type must be a string, got {self.model_type!r}")
        for name in ('features_size', 'subsampling_factor', 'max_tokens_per_step'):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")

    def get(self, name: str, default: Any) -> Any:
        value = getattr(self, name)
        return default if value is None else value


@dataclass(frozen=True)
class OnnxOptions:
    """How onnxruntime sessions are created for every network of a model.

    providers / provider_options are passed to onnxruntime.InferenceSession;
    sess_options is an onnxruntime.SessionOptions (None = library defaults).
    """
    providers: tuple = ('CPUExecutionProvider',)
    provider_options: Optional[tuple] = None
    sess_options: Any = None


def parse_config(raw: dict) -> AsrConfig:
    if not isinstance(raw, dict):
        raise ValueError(f"Config must be a JSON object, got {type(raw).__name__}")
    known = {f.name for f in dataclasses.fields(AsrConfig)}
    ignored = sorted(set(raw) - known)
    if ignored:
        logger.debug("Ignoring config keys: %s", ', '.join(ignored))
    return AsrConfig(**{k: v for k, v in raw.items() if k in known})


def load_config(path: Optional[str]) -> AsrConfig:
    """Read config.json; no path (or no file) means an all-defaults config."""
    if path is None or not Path(path).exists():
        return AsrConfig()
    return parse_config(json.loads(Path(path).read_text(encoding='utf-8')))
