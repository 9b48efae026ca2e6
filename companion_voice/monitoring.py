import logging
import os
import time
from typing import Callable, Dict, Optional


def configure(debug: bool = False) -> None:
    """Configure global logging. LOG_LEVEL overrides the debug flag."""
    level_name = os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
    else:
        level = logging.DEBUG if debug else logging.INFO
    # Configure root logger if not already configured
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def get_logger(name: str):
    return logging.getLogger(f"companion_voice.{name}")


logger = get_logger("monitoring")


class PipelineMonitor:
    """Per-stage timings for the current turn (capture, transcribe, complete, speak)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._stages: Dict[str, Dict] = {}

    def reset(self) -> None:
        self._stages = {}

    def stage_start(self, stage: str) -> float:
        """Mark the start time for a pipeline stage and return the timestamp."""
        t = self._clock()
        self._stages[stage] = {"start": t, "end": None, "duration": None, "success": None, "msg": None}
        return t

    def stage_end(self, stage: str, success: bool = True, msg: Optional[str] = None) -> float:
        """Mark the end time for a pipeline stage and store duration and status."""
        t = self._clock()
        rec = self._stages.get(stage, {})
        start = rec.get("start")
        dur = (t - start) if start is not None else None
        self._stages[stage] = {"start": start, "end": t, "duration": dur, "success": success, "msg": msg}
        if dur is not None:
            logger.debug("[%s] %s in %.3fs %s", stage, "ok" if success else "failed", dur, msg or "")
        return t

    def report(self) -> Dict[str, Dict]:
        """Return a copy of the current pipeline state for monitoring or printing."""
        return {k: dict(v) for k, v in self._stages.items()}
