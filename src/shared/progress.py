import logging
import sys
import time
from typing import TextIO

logger = logging.getLogger(__name__)


class SingleLineRenderer:
    """Перерисовывает одну строку терминала (\\r без перевода строки)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._last_len = 0

    def write_line(self, msg: str) -> None:
        pad = max(0, self._last_len - len(msg))
        self._stream.write('\r' + msg + ' ' * pad)
        self._stream.flush()
        self._last_len = len(msg)

    def clear_line(self) -> None:
        if self._last_len:
            self._stream.write('\r' + ' ' * self._last_len + '\r')
            self._stream.flush()
        self._last_len = 0

    def finish(self) -> None:
        self._stream.write('\n')
        self._stream.flush()
        self._last_len = 0


def format_bytes(n: int) -> str:
    value = float(n)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if value < 1024 or unit == 'GB':
            return f'{value:.1f} {unit}' if unit != 'B' else f'{int(value)} B'
        value /= 1024
    return f'{n} B'


class ConsoleProgress:
    """Прогресс-бар загрузки в байтах."""

    def __init__(
        self,
        total: int,
        label: str = 'Download',
        writer: SingleLineRenderer | None = None,
    ) -> None:
        self.total = max(1, int(total))
        self.done = 0
        self.start = time.monotonic()
        self.label = label
        self._writer = writer or SingleLineRenderer()
        self._writer.clear_line()
        self._render()

    def _format_eta(self, remaining: float) -> str:
        if remaining == float('inf'):
            return '--:--'
        m, s = divmod(int(remaining), 60)
        h, m = divmod(m, 60)
        if h > 0:
            return f'{h:02d}:{m:02d}:{s:02d}'
        return f'{m:02d}:{s:02d}'

    def _render(self) -> None:
        elapsed = max(1e-6, time.monotonic() - self.start)
        rate = self.done / elapsed
        remaining = (self.total - self.done) / rate if rate > 0 else float('inf')
        bar_len = 30
        filled = int(bar_len * self.done / self.total)
        bar = '█' * filled + '░' * (bar_len - filled)
        msg = (
            f'{self.label}: [{bar}] {format_bytes(self.done)}/{format_bytes(self.total)}'
            f' | {format_bytes(int(rate))}/s | ETA {self._format_eta(remaining)}'
        )
        self._writer.write_line(msg)

    def update(self, done: int, total: int | None = None) -> None:
        if total is not None:
            self.total = max(1, int(total))
        self.done = min(self.total, int(done))
        self._render()

    def close(self) -> None:
        self._writer.finish()
