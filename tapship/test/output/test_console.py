"""Tests for tapship.output.console."""

import pytest

from tapship.output.console import ConsoleProtocol, MockConsole, RichConsole, Style


class TestStyle:
    def test_str(self) -> None:
        assert str(Style.DIM) == "dim"
        assert str(Style.HEADER) == "header"


class TestMockConsole:
    def test_captures_prefixed_messages(self) -> None:
        console = MockConsole()

        console.print("git push origin v1.0.0", Style.DIM)
        console.success("tag pushed")
        console.warning("local digest differs")
        console.error("dirty tree")
        console.info("resuming")

        assert console.messages == [
            "git push origin v1.0.0",
            "OK tag pushed",
            "warning: local digest differs",
            "error: dirty tree",
            "info: resuming",
        ]
        assert console.outputs[0].style == Style.DIM
        assert console.has_error()
        assert console.has_warning()

    def test_step_and_header(self) -> None:
        console = MockConsole()

        console.header("Release 0.13.5")
        console.step(3, 8, "changelog-update")
        console.newline()

        assert console.messages == ["Release 0.13.5", "[3/8] changelog-update", ""]
        assert console.outputs[1].style == Style.HEADER

    def test_find_and_clear(self) -> None:
        console = MockConsole()
        console.print("one")
        console.print("two")

        assert [o.message for o in console.find("tw")] == ["two"]
        assert console.text == "one\ntwo"

        console.clear()
        assert console.messages == []
        assert not console.has_error()


class TestRichConsole:
    def test_satisfies_protocol(self) -> None:
        console: ConsoleProtocol = RichConsole()
        assert console is not None

    def test_escapes_markup(self, capsys: pytest.CaptureFixture[str]) -> None:
        console = RichConsole()

        console.print("[Unreleased] stays literal")
        console.error("tag [v1.0.0] exists")
        console.step(1, 8, "gate-check")

        out = capsys.readouterr().out
        assert "[Unreleased] stays literal" in out
        assert "error: tag [v1.0.0] exists" in out
        assert "[1/8] gate-check" in out
