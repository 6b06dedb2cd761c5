"""nano_asr: greedy CTC / RNN-T / TDT speech recognition over ONNX exports."""
from typing import Optional, Sequence

from nano_asr._loader import model_names, resolve_model_files
from nano_asr._loader import load as _load
from nano_asr.asr import BatchResults, Recognizer, SpeechRecognizer
from nano_asr.config import AsrConfig, OnnxOptions
from nano_asr.result import TimestampedResult, WordTimestamp

__all__ = [
    'AsrConfig', 'BatchResults', 'OnnxOptions', 'Recognizer', 'SpeechRecognizer',
    'TimestampedResult', 'WordTimestamp', 'load_model', 'model_names', 'resolve_model_files',
]

_MODEL_CACHE: dict = {}


def load_model(
    model: str,
    path: Optional[str] = None,
    quantization: Optional[str] = None,
    providers: Optional[Sequence[str]] = None,
    sess_options=None,
    provider_options: Optional[Sequence[dict]] = None,
) -> SpeechRecognizer:
    """Download (or use cached) model files and return a ready-to-use recognizer.

    Args:
        model: one of model_names(), a Hugging Face repo id, or a local
               directory whose config.json declares model_type.
        path: directory holding the model files (skips the download).
        quantization: file suffix selecting quantized networks, e.g. 'int8'.
        providers: onnxruntime execution providers (default CPU).
        sess_options: onnxruntime.SessionOptions shared by all networks.
        provider_options: per-provider option dicts, parallel to providers.
    Returns:
        SpeechRecognizer; call recognize(), recognize_long() or recognize_batch().
    """
    options = OnnxOptions(
        providers=tuple(providers) if providers else OnnxOptions.providers,
        provider_options=tuple(provider_options) if provider_options else None,
        sess_options=sess_options,
    )
    # SessionOptions can't be compared, so recognizers built with them are never shared
    if sess_options is not None:
        return _load(model, path, quantization, options)

    cache_key = (model, path, quantization, options.providers, _options_key(options.provider_options))
    if cache_key in _MODEL_CACHE:
        return _MODEL_CACHE[cache_key]

    recognizer = _load(model, path, quantization, options)
    _MODEL_CACHE[cache_key] = recognizer
    return recognizer


def _options_key(provider_options) -> Optional[tuple]:
    if provider_options is None:
        return None
    return tuple(tuple(sorted((str(k), str(v)) for k, v in opts.items())) for opts in provider_options)
