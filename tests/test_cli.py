"""
Tests for the command line interface (src/cli.py)
"""

import json

import pytest

import cli


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    monkeypatch.setattr(cli, "load_dotenv", lambda: False)


class TestParser:
    def test_serve_options(self):
        args = cli.build_parser().parse_args(["serve", "--port", "8080", "--production", "--threads", "8"])
        assert args.port == 8080
        assert args.production is True
        assert args.threads == 8
        assert args.func is cli.cmd_serve

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            cli.main(["--version"])
        assert cli.__version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "guardian-recovery" in capsys.readouterr().out


class TestInfo:
    def test_info_prints_policy(self, monkeypatch, capsys):
        monkeypatch.setenv("RECOVERY_INITIAL_OWNER", "alice")
        assert cli.main(["info"]) == 0

        out = capsys.readouterr().out
        policy = json.loads(out[out.index("{"):])
        assert policy["initial_owner"] == "alice"
        assert policy["time_locks"]["EMERGENCY"] == 0

    def test_info_reports_bad_config(self, monkeypatch, capsys):
        monkeypatch.setenv("RECOVERY_STAKE_AMOUNT", "-1")
        assert cli.main(["info"]) == 1
        assert "Configuration error" in capsys.readouterr().out

    def test_info_json(self, monkeypatch, capsys):
        monkeypatch.delenv("RECOVERY_STAKE_AMOUNT", raising=False)
        assert cli.main(["info", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["version"] == cli.__version__
        assert data["policy"]["quorum_percent"] == 60


class TestCheck:
    def test_check_flags_missing_api_key(self, monkeypatch, capsys):
        monkeypatch.setenv("RECOVERY_REQUIRE_AUTH", "true")
        monkeypatch.delenv("RECOVERY_API_KEY", raising=False)
        assert cli.main(["check"]) == 1
        assert "RECOVERY_API_KEY is unset" in capsys.readouterr().out

    def test_check_passes_with_key(self, monkeypatch):
        monkeypatch.setenv("RECOVERY_API_KEY", "k")
        monkeypatch.delenv("RECOVERY_STAKE_AMOUNT", raising=False)
        monkeypatch.delenv("RECOVERY_MAX_REQUEST_AGE_DAYS", raising=False)
        assert cli.main(["check"]) == 0
