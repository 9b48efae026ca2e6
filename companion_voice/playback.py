"""Text-to-speech playback through the platform synthesizer (pyttsx3).

pyttsx3 drivers expect a single owning thread, so one worker thread creates
the engine and runs every utterance; callers hand it text through a queue.
`speak(text)` blocks until that utterance finishes. `cancel()` may be called
from another thread and makes the running `speak` return early.
"""
from __future__ import annotations

import queue
import threading
from concurrent.futures import Future
from typing import Optional, Tuple

import pyttsx3

from . import monitoring

logger = monitoring.get_logger("playback")


class Pyttsx3Playback:
    def __init__(self, rate_factor: float = 0.9, engine=None):
        self.rate_factor = rate_factor
        self._engine = engine
        self._configured = False
        self._queue: "queue.Queue[Optional[Tuple[str, Future]]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _get_engine(self):
        if self._engine is None:
            self._engine = pyttsx3.init()
        if not self._configured:
            base_rate = self._engine.getProperty("rate") or 200
            self._engine.setProperty("rate", int(base_rate * self.rate_factor))
            self._configured = True
        return self._engine

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            text, done = item
            try:
                engine = self._get_engine()
                logger.debug("speaking %d chars", len(text))
                engine.say(text)
                engine.runAndWait()
            except Exception as e:
                done.set_exception(e)
            else:
                done.set_result(None)

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, name="tts-worker", daemon=True)
                self._worker.start()

    def speak(self, text: str) -> None:
        safe = (text or "").strip()
        if not safe:
            return
        self._ensure_worker()
        done: Future = Future()
        self._queue.put((safe, done))
        done.result()

    def cancel(self) -> None:
        engine: Optional[object] = self._engine
        if engine is not None:
            engine.stop()

    def close(self) -> None:
        """Stop the worker thread after the queued utterances."""
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is not None:
            self._queue.put(None)
            worker.join(timeout=5)
