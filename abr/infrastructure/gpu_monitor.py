import shutil
import subprocess
import threading
import time
import logging
import re
from typing import List, Optional
from abr.domain.events import GpuUsageSampled
from abr.infrastructure.event_bus import EventBus

# Number parsing regex
NUM_RE = re.compile(r"(-?\d+(?:\.\d+)?)")

NVIDIA_SMI_USAGE_CMD = [
    "nvidia-smi",
    "--query-gpu=utilization.gpu",
    "--format=csv,noheader,nounits",
]

def parse_percent(s: str) -> Optional[float]:
    """'30' / '30 %' → 30.0, 'N/A' → None"""
    if not s:
        return None
    s = str(s).strip()
    if s in {"N/A", "--", "??", "[N/A]"}:
        return None
    m = NUM_RE.search(s)
    return float(m.group(1)) if m else None

class GpuMonitor:
    """Samples GPU utilization with nvidia-smi in a background thread.

    Only NVIDIA exposes a usable counter; for other GPU types the monitor
    starts but never samples.
    """

    def __init__(self, event_bus: EventBus, gpu_type: str = "nvidia", interval_s: float = 0.5,
                 logger: Optional[logging.Logger] = None):
        self.event_bus = event_bus
        self.gpu_type = gpu_type
        self.interval_s = interval_s
        self.logger = logger or logging.getLogger(__name__)
        self.samples: List[float] = []
        self._samples_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._available = gpu_type == "nvidia" and shutil.which("nvidia-smi") is not None

    @property
    def average(self) -> Optional[float]:
        with self._samples_lock:
            if not self.samples:
                return None
            return sum(self.samples) / len(self.samples)

    def sample(self) -> Optional[float]:
        """Takes one utilization reading (first GPU)."""
        try:
            result = subprocess.run(NVIDIA_SMI_USAGE_CMD, capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.debug(f"GPU_SAMPLE_FAILED: {e}")
            return None
        if result.returncode != 0 or not result.stdout:
            return None
        value = parse_percent(result.stdout.splitlines()[0])
        if value is None:
            return None
        with self._samples_lock:
            self.samples.append(value)
        self.event_bus.publish(GpuUsageSampled(utilization_percent=value))
        return value

    def _poll(self):
        """Polls nvidia-smi with compensated sleep."""
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            self.sample()
            next_tick += self.interval_s
            delay = next_tick - time.monotonic()
            if delay < 0:
                next_tick = time.monotonic()
                delay = 0
            self._stop_event.wait(delay)

    def start(self):
        if not self._available:
            self.logger.info(f"GPU usage monitoring unavailable for gpu_type={self.gpu_type}")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll, daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        average = self.average
        if average is not None:
            self.logger.info(f"GPU_USAGE: average={average:.1f}% samples={len(self.samples)}")
