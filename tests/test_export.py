"""Tests for the export driver state machine (mocked ffprobe/ffmpeg)."""

from pathlib import Path
from unittest.mock import patch

import pytest

from blindtest.export import (
    Done,
    Error,
    ExportDriver,
    ExportState,
    Frame,
    Started,
    StreamFormatError,
    parse_frame,
    parse_progress_line,
    run_export,
)
from blindtest.ffutil import ProbeFailed


class TestParseProgressLine:
    def test_key_value(self):
        assert parse_progress_line("frame=10\n") == ("frame", "10")

    def test_value_may_contain_equals(self):
        assert parse_progress_line("a=b=c") == ("a", "b=c")

    def test_empty_value(self):
        assert parse_progress_line("bitrate=") == ("bitrate", "")

    @pytest.mark.parametrize("line", ["garbage", "=10", ""])
    def test_malformed(self, line):
        with pytest.raises(StreamFormatError):
            parse_progress_line(line)


class TestParseFrame:
    def test_valid(self):
        assert parse_frame("42") == 42

    @pytest.mark.parametrize("value", ["abc", "-1", "1.5", ""])
    def test_invalid(self, value):
        assert parse_frame(value) is None


@patch("blindtest.export.ffutil.probe_duration", return_value=5)
@patch("blindtest.export.subprocess.Popen")
class TestExportDriver:
    def test_happy_path(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("frame=10\nframe=20\nprogress=end\n")

        events = list(ExportDriver(export_request))

        assert events == [Started(), Frame(10), Frame(20), Done()]
        mock_probe.assert_called_once_with(Path("countdown.mp4"))

    def test_command_is_built_from_request(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("progress=end\n")

        list(ExportDriver(export_request, extra_args=["-threads", "2"]))

        cmd = mock_popen.call_args[0][0]
        assert cmd[0] == "ffmpeg"
        assert cmd[-1] == "out.mp4"
        assert "concat=n=4:v=1:a=0[v]" in cmd[cmd.index("-filter_complex") + 1]
        assert cmd[cmd.index("-threads") + 1] == "2"

    def test_malformed_line_is_fatal(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("garbage\nframe=5\nprogress=end\n")

        events = list(ExportDriver(export_request))

        assert len(events) == 2
        assert events[0] == Started()
        assert isinstance(events[1], Error)
        assert "key=value" in events[1].message

    def test_unparseable_frame_is_skipped(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("frame=abc\nframe=-2\nframe=7\nprogress=end\n")

        assert list(ExportDriver(export_request)) == [Started(), Frame(7), Done()]

    def test_other_keys_ignored(self, mock_popen, mock_probe, export_request, make_process):
        stdout = (
            "frame=3\n"
            "fps=25.00\n"
            "bitrate=N/A\n"
            "out_time=00:00:00.120000\n"
            "progress=continue\n"
            "\n"
            "frame=9\n"
            "progress=end\n"
        )
        mock_popen.return_value = make_process(stdout)

        assert list(ExportDriver(export_request)) == [Started(), Frame(3), Frame(9), Done()]

    def test_frames_are_not_reordered(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("frame=20\nframe=10\nprogress=end\n")

        assert list(ExportDriver(export_request)) == [Started(), Frame(20), Frame(10), Done()]

    def test_eof_with_clean_exit_is_done(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("frame=1\n", returncode=0)

        assert list(ExportDriver(export_request)) == [Started(), Frame(1), Done()]

    def test_eof_with_failure_is_error(self, mock_popen, mock_probe, export_request, make_process):
        proc = make_process("frame=1\n", returncode=1)

        def spawn(cmd, **kwargs):
            kwargs["stderr"].write(b"Invalid data found when processing input\n")
            return proc

        mock_popen.side_effect = spawn

        events = list(ExportDriver(export_request))

        assert events[:2] == [Started(), Frame(1)]
        assert isinstance(events[2], Error)
        assert "status 1" in events[2].message
        assert "Invalid data found" in events[2].message

    def test_countdown_longer_than_duration(self, mock_popen, mock_probe, export_request):
        mock_probe.return_value = 30

        events = list(ExportDriver(export_request))

        assert len(events) == 1
        assert isinstance(events[0], Error)
        assert "longer" in events[0].message
        mock_popen.assert_not_called()

    def test_probe_failure(self, mock_popen, mock_probe, export_request):
        mock_probe.side_effect = ProbeFailed("could not launch ffprobe")

        events = list(ExportDriver(export_request))

        assert events == [Error("could not launch ffprobe")]
        mock_popen.assert_not_called()

    def test_spawn_failure(self, mock_popen, mock_probe, export_request):
        mock_popen.side_effect = FileNotFoundError("ffmpeg")

        events = list(ExportDriver(export_request))

        assert len(events) == 1
        assert isinstance(events[0], Error)
        assert "error launching ffmpeg" in events[0].message

    def test_finished_is_terminal(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("progress=end\n")
        driver = ExportDriver(export_request)

        list(driver)

        assert driver.state is ExportState.FINISHED
        assert driver.step() is None
        with pytest.raises(StopIteration):
            next(driver)

    def test_states(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("frame=1\nprogress=end\n")
        driver = ExportDriver(export_request)

        assert driver.state is ExportState.READY
        assert next(driver) == Started()
        assert driver.state is ExportState.EXPORTING
        assert next(driver) == Frame(1)
        assert driver.state is ExportState.EXPORTING
        assert next(driver) == Done()
        assert driver.state is ExportState.FINISHED

    def test_close_mid_export_terminates(self, mock_popen, mock_probe, export_request, make_process):
        proc = make_process("frame=1\nframe=2\n")
        proc.poll.return_value = None
        mock_popen.return_value = proc

        with ExportDriver(export_request) as driver:
            assert next(driver) == Started()
            assert next(driver) == Frame(1)

        proc.terminate.assert_called_once()
        proc.wait.assert_called()
        assert driver.state is ExportState.FINISHED

    def test_abandoned_generator_terminates(self, mock_popen, mock_probe, export_request, make_process):
        proc = make_process("frame=1\nframe=2\nprogress=end\n")
        proc.poll.return_value = None
        mock_popen.return_value = proc

        events = run_export(export_request)
        assert next(events) == Started()
        events.close()

        proc.terminate.assert_called_once()
        proc.wait.assert_called()

    def test_cancel_before_start(self, mock_popen, mock_probe, export_request):
        driver = ExportDriver(export_request)
        driver.cancel()

        assert list(driver) == [Error("export cancelled")]
        mock_popen.assert_not_called()

    def test_cancel_while_exporting(self, mock_popen, mock_probe, export_request, make_process):
        proc = make_process("frame=1\n", returncode=-15)
        proc.poll.return_value = None
        mock_popen.return_value = proc
        driver = ExportDriver(export_request)

        assert next(driver) == Started()
        driver.cancel()
        proc.terminate.assert_called_once()
        proc.poll.return_value = -15

        assert list(driver) == [Frame(1), Error("export cancelled")]

    def test_run_export(self, mock_popen, mock_probe, export_request, make_process):
        mock_popen.return_value = make_process("frame=10\nframe=20\nprogress=end\n")

        assert list(run_export(export_request)) == [Started(), Frame(10), Frame(20), Done()]
