# -*- coding: utf-8 -*-

import json
import logging

import pytest

import palworld.cli
import palworld.memory
import palworld.rcon
import palworld.results
import palworld.server
from palworld.results import Player


@pytest.fixture
def rcon_class(monkeypatch):
    rcon_class = pytest.MagicMock()
    monkeypatch.setattr(palworld.cli.rcon, "RCON", rcon_class)
    return rcon_class


@pytest.fixture
def server_class(monkeypatch, rcon_class):
    server_class = pytest.Mock(
        return_value=pytest.Mock(spec=palworld.server.PalworldServer))
    monkeypatch.setattr(palworld.cli.server, "PalworldServer", server_class)
    return server_class


@pytest.fixture
def server(server_class):
    server = server_class.return_value
    server.players.return_value = palworld.results.PlayerList(
        (Player("NameA", "111", "222"), Player("NameB", "333", "444")), ())
    server.version.return_value = palworld.results.Version(
        "Welcome to Pal Server[v0.1.5.1] My Server", "v0.1.5.1", "My Server")
    server.save.return_value = palworld.results.Ack("Complete Save", True)
    server.shutdown.return_value = palworld.results.Ack(
        "The server will shut down in 30 seconds.", True)
    server.broadcast.return_value = palworld.results.Ack(
        "Broadcasted: hi", True)
    server.command.return_value = palworld.results.RawText("pong")
    return server


class TestParseAddress(object):

    def test(self):
        assert palworld.cli._parse_address("example.com:1234", 25575) == (
            "example.com", 1234)

    def test_default_port(self):
        assert palworld.cli._parse_address("example.com", 25575) == (
            "example.com", 25575)

    @pytest.mark.parametrize("address", [
        "example.com:foo",
        "example.com:0",
        "example.com:65536",
        "example.com:",
    ])
    def test_bad_port(self, address):
        with pytest.raises(ValueError):
            palworld.cli._parse_address(address, 25575)

    @pytest.mark.parametrize(("address", "expected"), [
        ("::1", ("::1", 25575)),
        ("fe80::1:2", ("fe80::1:2", 25575)),
        ("[::1]", ("::1", 25575)),
        ("[::1]:1234", ("::1", 1234)),
        ("[fe80::1:2]:8211", ("fe80::1:2", 8211)),
    ])
    def test_ipv6(self, address, expected):
        assert palworld.cli._parse_address(address, 25575) == expected

    @pytest.mark.parametrize("address", [
        "[::1",
        "[::1]1234",
        "[::1]:foo",
    ])
    def test_bad_ipv6(self, address):
        with pytest.raises(ValueError):
            palworld.cli._parse_address(address, 25575)

    def test_ipv6_port_option(self):
        assert palworld.cli._address("[::1]:1234", "4321", 25575) == (
            "::1", 4321)
        assert palworld.cli._address("::1", "4321", 25575) == ("::1", 4321)

    def test_port_option(self):
        assert palworld.cli._address("example.com:1234", "4321", 25575) == (
            "example.com", 4321)

    def test_no_port_option(self):
        assert palworld.cli._address("example.com:1234", None, 25575) == (
            "example.com", 1234)


class TestConfigureLogging(object):

    @pytest.mark.parametrize(("name", "level"), [
        ("trace", logging.DEBUG),
        ("DEBUG", logging.DEBUG),
        ("info", logging.INFO),
        ("warning", logging.WARNING),
        ("error", logging.ERROR),
    ])
    def test(self, monkeypatch, name, level):
        basic_config = pytest.Mock()
        monkeypatch.setattr(logging, "basicConfig", basic_config)
        palworld.cli._configure_logging(name)
        assert basic_config.call_args[1]["level"] == level

    @pytest.mark.parametrize("name", [None, "", "loud"])
    def test_disabled(self, monkeypatch, name):
        basic_config = pytest.Mock()
        monkeypatch.setattr(logging, "basicConfig", basic_config)
        palworld.cli._configure_logging(name)
        assert not basic_config.called
        assert logging.root.manager.disable == logging.CRITICAL


class TestPassword(object):

    def test_given(self, monkeypatch):
        monkeypatch.setenv("PALWORLD_RCON_PASSWORD", "environment")
        assert palworld.cli._password("given") == "given"

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("PALWORLD_RCON_PASSWORD", "environment")
        assert palworld.cli._password(None) == "environment"

    def test_prompt(self, monkeypatch):
        monkeypatch.delenv("PALWORLD_RCON_PASSWORD", raising=False)
        monkeypatch.setattr(
            palworld.cli.getpass, "getpass", lambda prompt: "prompted")
        assert palworld.cli._password(None) == "prompted"


class TestMain(object):

    def test_no_action(self, rcon_class):
        with pytest.raises(SystemExit):
            palworld.cli._main(["example.com"])
        assert not rcon_class.called

    def test_connection(self, rcon_class, server_class):
        assert palworld.cli._main(
            ["example.com:1234", "-p", "secret", "-t", "5", "--save"]) == 0
        rcon_class.assert_called_once_with(
            ("example.com", 1234), "secret", timeout=5.0, multi_part=True)
        server_class.assert_called_once_with(rcon_class.return_value, "_")
        rcon_class.return_value.__enter__.assert_called_once_with()
        rcon_class.return_value.__exit__.assert_called_once_with(
            None, None, None)

    def test_defaults(self, rcon_class, server, monkeypatch):
        monkeypatch.setenv("PALWORLD_RCON_PASSWORD", "environment")
        assert palworld.cli._main(["--save", "--no-multi"]) == 0
        rcon_class.assert_called_once_with(
            ("localhost", 25575), "environment",
            timeout=10.0, multi_part=False)

    def test_list(self, capsys, server):
        assert palworld.cli._main(["-p", "secret", "--list"]) == 0
        out, _ = capsys.readouterr()
        assert out == (
            "Got player info: found 2 online!\n"
            "Name\tUID\tSteamID\n"
            "NameA\t111\t222\n"
            "NameB\t333\t444\n"
        )

    def test_list_json(self, capsys, server):
        assert palworld.cli._main(["-p", "secret", "--list", "--json"]) == 0
        out, _ = capsys.readouterr()
        assert json.loads(out) == [
            {"name": "NameA", "unique_id": "111", "steam_id": "222"},
            {"name": "NameB", "unique_id": "333", "steam_id": "444"},
        ]

    def test_list_row_errors(self, capsys, server):
        server.players.return_value = palworld.results.PlayerList(
            (Player("NameA", "111", "222"),),
            (palworld.results.RowError(3, "bad", "Expected 3 fields"),),
        )
        assert palworld.cli._main(["-p", "secret", "-l"]) == 0
        out, err = capsys.readouterr()
        assert "found 1 online" in out
        assert "Skipped player row 3: Expected 3 fields" in err

    def test_version(self, capsys, server):
        assert palworld.cli._main(["-p", "secret", "-v"]) == 0
        out, _ = capsys.readouterr()
        assert out == "v0.1.5.1\n"

    def test_version_json(self, capsys, server):
        assert palworld.cli._main(["-p", "secret", "-v", "-j"]) == 0
        out, _ = capsys.readouterr()
        assert json.loads(out) == {"version": "v0.1.5.1"}

    def test_shutdown(self, capsys, server):
        assert palworld.cli._main([
            "-p", "secret",
            "--shutdown", "30",
            "--shutdown-message", "Server restarting",
        ]) == 0
        server.shutdown.assert_called_once_with(30, "Server restarting")
        out, _ = capsys.readouterr()
        assert out == "Shutdown: True\n"

    def test_shutdown_bad_delay(self, capsys, server):
        assert palworld.cli._main(["-p", "secret", "-S", "soon"]) == 1
        assert not server.shutdown.called
        _, err = capsys.readouterr()
        assert err.startswith("Error: ")

    def test_broadcast(self, capsys, server_class, server):
        assert palworld.cli._main(
            ["-p", "secret", "-b", "hi", "-r", "+"]) == 0
        assert server_class.call_args[0][1] == "+"
        server.broadcast.assert_called_once_with("hi")
        out, _ = capsys.readouterr()
        assert out == "Broadcasted: hi\n"

    def test_command(self, capsys, server):
        assert palworld.cli._main(["-p", "secret", "-c", "ping"]) == 0
        server.command.assert_called_once_with("ping")
        out, _ = capsys.readouterr()
        assert out == "pong\n"

    def test_order(self, server):
        assert palworld.cli._main([
            "-p", "secret",
            "--command", "ping",
            "--broadcast", "hi",
            "--save",
            "--server-version",
            "--list",
        ]) == 0
        assert [name for name, _, _ in server.mock_calls] == [
            "players", "version", "save", "broadcast", "command"]

    def test_failure(self, capsys, rcon_class, server):
        rcon_class.return_value.__enter__.side_effect = \
            palworld.rcon.RCONAuthenticationError()
        assert palworld.cli._main(["-p", "wrong", "--save"]) == 1
        assert not server.save.called
        _, err = capsys.readouterr()
        assert err == "Error: Wrong password\n"

    def test_command_failure(self, capsys, server):
        server.save.side_effect = palworld.rcon.RCONTimeoutError(
            "No response within 10.0 seconds")
        assert palworld.cli._main(["-p", "secret", "--save", "-c", "x"]) == 1
        assert not server.command.called
        _, err = capsys.readouterr()
        assert err == "Error: No response within 10.0 seconds\n"

    def test_bad_timeout(self, rcon_class):
        assert palworld.cli._main(["-p", "x", "-s", "-t", "soon"]) == 1
        assert not rcon_class.called

    def test_bad_port(self, rcon_class):
        assert palworld.cli._main(["-p", "x", "-s", "-P", "none"]) == 1
        assert not rcon_class.called

    def test_memory(self, capsys, monkeypatch, rcon_class):
        monkeypatch.setattr(
            palworld.cli.memory, "local_memory",
            lambda: palworld.memory.MemInfo(1000, 100, 250, 10, 20))
        assert palworld.cli._main(["--memory"]) == 0
        assert not rcon_class.called
        out, _ = capsys.readouterr()
        assert out.splitlines() == [
            "mem_total: 1000 kB",
            "mem_free: 100 kB",
            "mem_available: 250 kB",
            "buffers: 10 kB",
            "cached: 20 kB",
            "used: 750 kB (75.00%)",
        ]

    def test_memory_json(self, capsys, monkeypatch, rcon_class):
        monkeypatch.setattr(
            palworld.cli.memory, "local_memory",
            lambda: palworld.memory.MemInfo(1000, 100, 250, 10, 20))
        assert palworld.cli._main(["--memory", "--json"]) == 0
        out, _ = capsys.readouterr()
        values = json.loads(out)
        assert values["mem_total"] == 1000
        assert values["used"] == 750
        assert values["used_percent"] == 75.0

    def test_memory_ssh(self, capsys, monkeypatch, rcon_class):
        remote_memory = pytest.Mock(
            return_value=palworld.memory.MemInfo(1000, 100, 250, 10, 20))
        monkeypatch.setattr(
            palworld.cli.memory, "remote_memory", remote_memory)
        assert palworld.cli._main(
            ["example.com", "--memory-ssh", "-u", "steam"]) == 0
        remote_memory.assert_called_once_with("example.com", "steam", 22)
        assert not rcon_class.called

    def test_memory_ssh_port(self, monkeypatch, rcon_class):
        remote_memory = pytest.Mock(
            return_value=palworld.memory.MemInfo(1000, 100, 250, 10, 20))
        monkeypatch.setattr(
            palworld.cli.memory, "remote_memory", remote_memory)
        assert palworld.cli._main(
            ["example.com", "--memory-ssh", "-P", "2222"]) == 0
        remote_memory.assert_called_once_with("example.com", "root", 2222)

    def test_memory_ssh_failure(self, capsys, monkeypatch, rcon_class):
        remote_memory = pytest.Mock(
            side_effect=palworld.memory.RemoteCommandError("ssh failed"))
        monkeypatch.setattr(
            palworld.cli.memory, "remote_memory", remote_memory)
        assert palworld.cli._main(["example.com", "-M"]) == 1
        _, err = capsys.readouterr()
        assert err == "Error: ssh failed\n"

    def test_main_exit_status(self, monkeypatch):
        monkeypatch.setattr(palworld.cli, "_main", lambda: 1)
        with pytest.raises(SystemExit) as excinfo:
            palworld.cli.main()
        assert excinfo.value.code == 1
