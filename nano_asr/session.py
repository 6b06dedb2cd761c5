"""onnxruntime glue: session creation and typed network inputs."""
import logging

import numpy as np
import onnxruntime as ort

from nano_asr.config import OnnxOptions

logger = logging.getLogger(__name__)

_INT_TYPES = {
    'tensor(int64)': np.int64,
    'tensor(int32)': np.int32,
}


def create_session(path, options: OnnxOptions = None) -> ort.InferenceSession:
    """Open an ONNX network with the given providers / session options."""
    options = options or OnnxOptions()
    session = ort.InferenceSession(
        str(path),
        sess_options=options.sess_options,
        providers=list(options.providers),
        provider_options=list(options.provider_options) if options.provider_options else None,
    )
    for inp in session.get_inputs():
        logger.debug("%s input %s: type=%s shape=%s", path, inp.name, inp.type, inp.shape)
    return session


def input_meta(session, name: str):
    for inp in session.get_inputs():
        if inp.name == name:
            return inp
    raise KeyError(f"Network has no input named {name!r}")


def int_input(session, name: str, values) -> np.ndarray:
    """Integer input (lengths, token ids) with the width the network declares."""
    declared = input_meta(session, name).type
    if declared not in _INT_TYPES:
        raise TypeError(f"Unsupported element type {declared} for integer input {name!r}")
    return np.asarray(values, dtype=_INT_TYPES[declared])


def run(session, output_names, inputs: dict) -> dict:
    """Run the network and return {output_name: ndarray}."""
    outputs = session.run(list(output_names), inputs)
    return dict(zip(output_names, outputs))
