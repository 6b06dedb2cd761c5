"""Model file resolution and the model-name registry for nano_asr."""
import logging
from pathlib import Path
from typing import Callable, NamedTuple, Optional

from huggingface_hub import snapshot_download

from nano_asr import gigaam, kaldi, nemo, whisper
from nano_asr.config import load_config

logger = logging.getLogger(__name__)


class ModelSpec(NamedTuple):
    build: Callable
    files: dict
    repo_id: str


_MODELS = {
    'gigaam-v2-ctc':       ModelSpec(gigaam.build_ctc, gigaam.MODEL_FILES['gigaam-v2-ctc'], 'istupakov/gigaam-v2-onnx'),
    'gigaam-v2-rnnt':      ModelSpec(gigaam.build_rnnt, gigaam.MODEL_FILES['gigaam-v2-rnnt'], 'istupakov/gigaam-v2-onnx'),
    'kaldi-rnnt':          ModelSpec(kaldi.build_rnnt, kaldi.MODEL_FILES['kaldi-rnnt'], 'alphacep/vosk-model-ru'),
    'vosk':                ModelSpec(kaldi.build_rnnt, kaldi.MODEL_FILES['vosk'], 'alphacep/vosk-model-small-ru'),
    'nemo-conformer-ctc':  ModelSpec(nemo.build_ctc, nemo.MODEL_FILES['nemo-conformer-ctc'],
                                     'istupakov/stt_ru_fastconformer_hybrid_large_pc_onnx'),
    'nemo-conformer-rnnt': ModelSpec(nemo.build_rnnt, nemo.MODEL_FILES['nemo-conformer-rnnt'],
                                     'istupakov/stt_ru_fastconformer_hybrid_large_pc_onnx'),
    'nemo-conformer-tdt':  ModelSpec(nemo.build_tdt, nemo.MODEL_FILES['nemo-conformer-tdt'],
                                     'istupakov/parakeet-tdt-0.6b-v2-onnx'),
    'whisper':             ModelSpec(whisper.build, whisper.MODEL_FILES['whisper'], 'istupakov/whisper-base-onnx'),
}

OPTIONAL_FILES = ('config',)


def model_names() -> list:
    return list(_MODELS)


def _quantized(pattern: str, quantization: Optional[str]) -> str:
    # '?' matches the separator before the suffix: model.int8.onnx, model_int8.onnx
    return pattern.format(q=f'?{quantization}' if quantization else '')


def resolve_model_files(patterns: dict, path, quantization: Optional[str] = None) -> dict:
    """Map each file key to the single file in `path` matching its glob pattern.

    Raises:
        FileNotFoundError: a required pattern matches no file, or any pattern
            matches more than one.
    """
    path  = Path(path)
    files = {}
    for key, pattern in patterns.items():
        glob    = _quantized(pattern, quantization)
        matches = sorted(p for p in path.glob(glob) if p.is_file())
        if not matches and key in OPTIONAL_FILES:
            continue
        if len(matches) != 1:
            found = ', '.join(str(m) for m in matches) or 'nothing'
            raise FileNotFoundError(f"Expected one file for {key!r} matching {path / glob}, found {found}")
        files[key] = matches[0]
        logger.debug("Resolved %s -> %s", key, matches[0])
    return files


def download_model(repo_id: str, patterns: dict, quantization: Optional[str] = None) -> Path:
    """Fetch only the files a model needs from the Hugging Face hub."""
    allow = [_quantized(p, quantization) for p in patterns.values()]
    logger.info("Downloading %s (%s)", repo_id, ', '.join(allow))
    return Path(snapshot_download(repo_id, allow_patterns=allow))


def _model_type(model: str, path) -> tuple:
    """Resolve a hub repo id or local directory to (model_type, path) via its config.json."""
    if path is None and Path(model).is_dir():
        path = model
    if path is not None:
        config_dir = Path(path)
    elif '/' in model:
        config_dir = Path(snapshot_download(model, allow_patterns=['config.json']))
    else:
        raise ValueError(f"Model {model!r} not supported; available: {', '.join(_MODELS)}")

    model_type = load_config(config_dir / 'config.json').model_type
    if model_type not in _MODELS:
        raise ValueError(f"{model}: config.json model_type {model_type!r} is not supported")
    return model_type, path


def load(model: str, path=None, quantization: Optional[str] = None, options=None):
    """Resolve, download if needed, and build a recognizer for `model`."""
    if model in _MODELS:
        model_type = model
        repo_id    = _MODELS[model].repo_id
    else:
        model_type, path = _model_type(model, path)
        repo_id = model

    spec = _MODELS[model_type]
    if path is None:
        path = download_model(repo_id, spec.files, quantization)

    files  = resolve_model_files(spec.files, path, quantization)
    config = load_config(files.get('config'))
    logger.info("Loading %s from %s", model_type, path)
    return spec.build(files, config, options)
