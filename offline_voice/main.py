#!/usr/bin/env python3
"""
Offline voice input from the command line.

- microphone -> capture worker (optional VAD auto-stop)
- recording done -> Whisper inference on the local model cache
- partials -> stderr, final transcript -> stdout
"""

import argparse
import logging
import sys
import threading

from .app.listeners import VoiceInputListener
from .app.session import VoiceInputSession
from .core.errors import PermissionDenied
from .core.runtime_config import RecognitionSettings, SettingsStore

logger = logging.getLogger(__name__)


class ConsoleListener(VoiceInputListener):
    """Prints session events and records whether anything failed."""

    def __init__(self):
        self.finished = threading.Event()
        self.failed = False
        self.text = ""

    def on_recording_started(self) -> None:
        print("Listening...", file=sys.stderr)

    def on_recording_error(self, message: str) -> None:
        print(f"Error: {message}", file=sys.stderr)
        self.failed = True
        self.finished.set()

    def on_permission_error(self) -> None:
        print(f"Error: {PermissionDenied().user_message}", file=sys.stderr)
        self.failed = True
        self.finished.set()

    def on_recognition_partial(self, text: str) -> None:
        print(f"... {text}", file=sys.stderr)

    def on_recognition_result(self, text: str, language: str) -> None:
        self.text = text
        logger.info("Recognized language: %s", language)

    def on_recognition_error(self, message: str) -> None:
        print(f"Error: {message}", file=sys.stderr)
        self.failed = True
        # Load failures end the call without a finished event.
        self.finished.set()

    def on_recognition_finished(self) -> None:
        self.finished.set()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Offline speech-to-text voice input")
    parser.add_argument(
        "--language",
        default=None,
        help="Comma-separated language codes, primary first (e.g. en or de,en)",
    )
    parser.add_argument("--no-vad", action="store_true", help="Record until Ctrl+C")
    parser.add_argument("--models-dir", default=None, help="Directory holding the .pt checkpoints")
    parser.add_argument("--beam-size", type=int, default=None)
    parser.add_argument("--prompt", default=None, help="Initial decoder prompt")
    parser.add_argument("--bail", default=None, help="Languages that yield an empty result")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> SettingsStore:
    store = SettingsStore(RecognitionSettings.from_env())
    overrides = {}
    if args.models_dir:
        overrides["models_dir"] = args.models_dir
    if args.beam_size is not None:
        overrides["beam_size"] = args.beam_size
    if args.prompt is not None:
        overrides["prompt"] = args.prompt
    if args.bail:
        overrides["bail_languages"] = tuple(
            code.strip().lower() for code in args.bail.split(",") if code.strip()
        )
    if overrides:
        store.update(**overrides)
    return store


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    listener = ConsoleListener()
    session = VoiceInputSession(listener, build_settings(args))
    try:
        if not session.start_listening(args.language, use_vad=not args.no_vad):
            print("Error: could not start recording", file=sys.stderr)
            return 1
        if args.no_vad:
            print("Recording, press Ctrl+C to stop.", file=sys.stderr)
        try:
            while session.is_listening():
                listener.finished.wait(0.1)
        except KeyboardInterrupt:
            pass
        session.stop_listening()
        listener.finished.wait()
    except KeyboardInterrupt:
        session.cancel()
        return 1
    finally:
        session.close()

    if listener.failed:
        return 1
    print(listener.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
