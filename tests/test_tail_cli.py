"""Tests for the diagnostic tail command."""

import io
import os
import threading

from logtrail import tail_cli
from logtrail.tail_cli import LinePrinter, backfill, build_cli_parser, follow


class TestArgs:
    def test_single_dash_options(self):
        args = build_cli_parser().parse_args(["-file=a.log", "-file", "b.log", "-lines=3", "-f"])
        assert args.files == ["a.log", "b.log"]
        assert args.lines == 3
        assert args.follow

    def test_defaults(self):
        args = build_cli_parser().parse_args(["-file=a.log"])
        assert args.lines == 10
        assert not args.follow


class TestBackfill:
    def test_prints_last_lines_with_source_prefix(self, tmp_path):
        path = tmp_path / "server1.log"
        path.write_text("one\ntwo\nthree\npart")
        out = io.StringIO()
        end = backfill(str(path), 2, LinePrinter(out))
        assert out.getvalue() == "[server1] two\n[server1] three\n"
        assert end == len("one\ntwo\nthree\n")

    def test_blank_lines_skipped(self, tmp_path):
        path = tmp_path / "server1.log"
        path.write_text("one\n\ntwo\n   \nthree\n\n")
        out = io.StringIO()
        end = backfill(str(path), 2, LinePrinter(out))
        assert out.getvalue() == "[server1] two\n[server1] three\n"
        assert end == len("one\n\ntwo\n   \nthree\n\n")

    def test_main_without_follow(self, tmp_path, capsys):
        path = tmp_path / "server1.log"
        path.write_text("".join(f"line {i}\n" for i in range(20)))
        assert tail_cli.main([f"-file={path}", "-lines=3"]) == 0
        assert capsys.readouterr().out == "[server1] line 17\n[server1] line 18\n[server1] line 19\n"

    def test_missing_file_exits_nonzero(self, tmp_path, capsys):
        good = tmp_path / "server1.log"
        good.write_text("hello\n")
        code = tail_cli.main([f"-file={tmp_path / 'missing.log'}", f"-file={good}"])
        captured = capsys.readouterr()
        assert code == 1
        assert "[server1] hello" in captured.out
        assert "missing.log" in captured.err

    def test_no_files_is_usage_error(self, capsys):
        assert tail_cli.main([]) == 1
        assert "Usage" in capsys.readouterr().err


class TestFollow:
    def test_follows_appends_and_rotation(self, tmp_path, wait_until):
        path = tmp_path / "server1.log"
        path.write_text("Log file open, 11/10/25 20:58:31\nfirst\n")
        out = io.StringIO()
        printer = LinePrinter(out)
        shutdown = threading.Event()
        end = backfill(str(path), 10, printer)
        tailers = follow({str(path): end}, printer, shutdown,
                         poll_interval=0.02, identity_check_interval=0.05)
        try:
            with open(path, "a") as f:
                f.write("second\n")
            assert wait_until(lambda: "[server1] second\n" in out.getvalue())

            incoming = tmp_path / "incoming.log"
            incoming.write_text("Log file open, 11/11/25 04:58:31\nrotated\n")
            os.replace(incoming, path)
            assert wait_until(lambda: "[server1] rotated\n" in out.getvalue())
        finally:
            shutdown.set()
            for t in tailers:
                t.join(timeout=2)

        text = out.getvalue()
        assert f"--- File replaced, resuming tail: {path} ---" in text
        assert text.count("[server1] first\n") == 1
        assert text.index("File replaced") < text.index("[server1] rotated")
