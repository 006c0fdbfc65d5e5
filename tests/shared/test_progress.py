"""Tests for progress module."""

import io

from shared.progress import (
    ConsoleProgress,
    SingleLineRenderer,
    format_bytes,
)


class TestSingleLineRenderer:
    """Tests for SingleLineRenderer class."""

    def test_write_line_pads_shorter_message(self):
        stream = io.StringIO()
        renderer = SingleLineRenderer(stream)
        renderer.write_line('long message')
        renderer.write_line('short')
        assert stream.getvalue().endswith('\rshort' + ' ' * 7)
        assert renderer._last_len == len('short')

    def test_clear_line_resets_last_len(self):
        renderer = SingleLineRenderer(io.StringIO())
        renderer._last_len = 50
        renderer.clear_line()
        assert renderer._last_len == 0

    def test_finish_writes_newline(self):
        stream = io.StringIO()
        SingleLineRenderer(stream).finish()
        assert stream.getvalue() == '\n'


class TestFormatBytes:
    def test_units(self):
        assert format_bytes(512) == '512 B'
        assert format_bytes(2048) == '2.0 KB'
        assert format_bytes(5 * 1024 * 1024) == '5.0 MB'
        assert format_bytes(3 * 1024**4) == '3072.0 GB'


class TestConsoleProgress:
    def test_update_clamps_to_total(self):
        progress = ConsoleProgress(100, writer=SingleLineRenderer(io.StringIO()))
        progress.update(150)
        assert progress.done == 100

    def test_total_can_change(self):
        progress = ConsoleProgress(100, writer=SingleLineRenderer(io.StringIO()))
        progress.update(150, total=200)
        assert progress.total == 200
        assert progress.done == 150

    def test_zero_total_is_safe(self):
        progress = ConsoleProgress(0, writer=SingleLineRenderer(io.StringIO()))
        progress.update(0)
        assert progress.total == 1
