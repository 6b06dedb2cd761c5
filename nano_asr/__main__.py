"""CLI entry point for nano_asr.

Usage:
    python -m nano_asr nemo-conformer-tdt audio.wav
    nano-asr gigaam-v2-rnnt audio.ogg --words
"""
import argparse
import logging

from nano_asr import load_model, model_names
from nano_asr.audio import DEFAULT_CHUNK_LENGTH


def main(argv=None):
    parser = argparse.ArgumentParser(description='nano-asr: greedy ONNX speech recognition')
    parser.add_argument('model', help=f"model name ({', '.join(model_names())}), hub repo id or directory")
    parser.add_argument('audio', help='input audio file (ogg/wav/m4a/…)')
    parser.add_argument('--path', help='directory with the model files (skips the download)')
    parser.add_argument('--quantization', help="quantized networks suffix, e.g. 'int8'")
    parser.add_argument('--language', help='language hint (Whisper only)')
    parser.add_argument('--provider', action='append', dest='providers',
                        help='onnxruntime execution provider, may be repeated')
    parser.add_argument('--chunk-length', type=float, default=DEFAULT_CHUNK_LENGTH,
                        help='seconds per chunk for long audio')
    parser.add_argument('--timestamps', action='store_true', help='print per-token timestamps')
    parser.add_argument('--words', action='store_true', help='print per-word timestamps')
    parser.add_argument('-v', '--verbose', action='count', default=0)
    args = parser.parse_args(argv)

    level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    model  = load_model(args.model, path=args.path, quantization=args.quantization, providers=args.providers)
    result = model.recognize_long(args.audio, language=args.language, chunk_length=args.chunk_length)
    print(result.text)

    if args.timestamps and result.tokens is not None:
        for token, ts in zip(result.tokens, result.timestamps):
            print(f"{ts:8.2f}s  {token!r}")
    if args.words:
        for w in result.words():
            print(f"{w.start:.2f}s – {w.end:.2f}s : {w.word}")


if __name__ == '__main__':
    main()
