"""Tests for the command line front end (main.py)."""

from unittest.mock import Mock

import pytest

from core.errors import EmptyRegistry, EngineError, IndexOutOfRange
from main import build_order, handle_command, parse_args


class TestParseArgs:
    def test_requires_two_files(self):
        with pytest.raises(SystemExit):
            parse_args(["only.wav"])

    def test_defaults(self):
        args = parse_args(["a.wav", "b.wav"])
        assert args.files == ["a.wav", "b.wav"]
        assert args.shuffle is None
        assert args.device is None
        assert args.blocksize is None

    def test_options(self):
        args = parse_args(["a.wav", "b.wav", "--shuffle", "--seed", "7",
                           "--device", "3", "--blocksize", "256"])
        assert args.shuffle is True
        assert args.seed == 7
        assert args.device == 3
        assert args.blocksize == 256


class TestBuildOrder:
    def test_identity_without_shuffle(self):
        assert build_order(["a", "b", "c"], shuffle=False) == [0, 1, 2]

    def test_shuffle_is_permutation(self):
        order = build_order(list("abcdef"), shuffle=True, seed=1)
        assert sorted(order) == list(range(6))

    def test_seed_is_reproducible(self):
        files = list("abcdefgh")
        assert build_order(files, True, seed=42) == build_order(files, True, seed=42)


class TestHandleCommand:
    @pytest.fixture
    def selector(self):
        return Mock()

    def test_quit(self, selector):
        assert handle_command(selector, "q\n") is False
        selector.next_source.assert_not_called()

    @pytest.mark.parametrize("line", ["\n", "n\n", "N"])
    def test_next(self, selector, line):
        assert handle_command(selector, line) is True
        selector.next_source.assert_called_once_with()

    def test_toggle(self, selector):
        assert handle_command(selector, "p\n")
        selector.toggle.assert_called_once_with()

    def test_select_is_one_based(self, selector):
        assert handle_command(selector, "2\n")
        selector.select_source.assert_called_once_with(1)

    def test_unknown_command_ignored(self, selector, capsys):
        assert handle_command(selector, "xyz\n")
        assert "unknown command" in capsys.readouterr().err

    def test_selection_errors_do_not_quit(self, selector):
        selector.select_source.side_effect = IndexOutOfRange("index 8 out of range")
        assert handle_command(selector, "9\n") is True

        selector.next_source.side_effect = EmptyRegistry("no sources")
        assert handle_command(selector, "n\n") is True

    def test_engine_errors_do_not_quit(self, selector, caplog):
        selector.toggle.side_effect = EngineError("failed to set abx to PAUSED")
        assert handle_command(selector, "p\n") is True
        assert "EngineError" in caplog.text
        assert handle_command(selector, "q\n") is False
