# -*- coding: utf-8 -*-

"""Command-line interface for administering Palworld servers."""

import getpass
import json
import logging
import os
import sys

import docopt

from palworld import memory
from palworld import rcon
from palworld import server


log = logging.getLogger(__name__)
_USAGE = """
Usage:
  {program} [HOST] [options]

Arguments:
  HOST          Address of the server. The port may be given as HOST:PORT
                (or [IPV6]:PORT) instead of using --port. Defaults to
                localhost.

Options:
  -h --help     Show this help.
  -p PASSWORD --password=PASSWORD
                RCON password. If not given it's read from the
                PALWORLD_RCON_PASSWORD environment variable or prompted for.
  -P PORT --port=PORT
                Port of the server. Defaults to 25575, or 22 for
                --memory-ssh.
  -t SECONDS --timeout=SECONDS
                Seconds to wait for the server to respond [default: 10].
  -n --no-multi
                Disables support for Multiple Packet Responses.
  -j --json     Print results as JSON.
  -l --list     Get player names, unique IDs and Steam IDs.
  -v --server-version
                Get the server version.
  -s --save     Tell the server to save.
  -S DELAY --shutdown=DELAY
                Tell the server to shut down after DELAY seconds.
  --shutdown-message=MESSAGE
                Message shown to players when shutting down.
  -b MESSAGE --broadcast=MESSAGE
                Broadcast a message to all players.
  -r STRING --replace-broadcast-space=STRING
                Replaces whitespace in broadcast and shutdown
                messages [default: _].
  -c COMMAND --command=COMMAND
                Run a command on the server and print its response.
  -m --memory   Get memory usage of this machine.
  -M --memory-ssh
                Get memory usage of HOST through SSH.
  -u USERNAME --username=USERNAME
                Username for the SSH connection [default: root].
  -d LEVEL --debug-level=LEVEL
                Log messages at LEVEL or above: trace, debug, info, warn
                or error.

Actions are carried out in the order they're listed above, all over the
same RCON connection. The process exits with a non-zero status if any of
them fail.
"""
_PASSWORD_VARIABLE = "PALWORLD_RCON_PASSWORD"
_LOG_FORMAT = "[%(asctime)s %(levelname)s %(name)s] %(message)s"
_LOG_LEVELS = (
    ("trace", logging.DEBUG),
    ("debug", logging.DEBUG),
    ("info", logging.INFO),
    ("warn", logging.WARNING),
    ("error", logging.ERROR),
)


def _parse_port(port_string):
    try:
        port = int(port_string)
    except ValueError:
        raise ValueError(
            "Could not parse address port "
            "{!r} as a number".format(port_string))
    if port <= 0 or port > 65535:
        raise ValueError("Port number must be in the range 1 to 65535")
    return port


def _parse_address(address, default_port):
    """Parse a colon-separted address string into constituent parts.

    Given a string like ``foo:1234`` this will split it into a tuple
    containing ``foo`` and ``1234``, where ``1234`` is an integer.
    IPv6 addresses must be bracketed to be given a port, as in
    ``[::1]:1234``; a bare IPv6 address such as ``::1`` is taken as the
    host. If the port is not given in the address string then it will
    default to ``default_port``.

    :raises ValueError: if the given port does not appear
        to be a valid port number or the brackets are unbalanced.

    :returns: a tuple containing the host as a string and the port as
        an integer.
    """
    port_string = None
    if address.startswith("["):
        host, bracket, rest = address[1:].partition("]")
        if not bracket or (rest and not rest.startswith(":")):
            raise ValueError("Malformed address {!r}".format(address))
        if rest:
            port_string = rest[1:]
    elif address.count(":") == 1:
        host, port_string = address.split(":")
    else:
        host = address
    if port_string is None:
        return host, default_port
    return host, _parse_port(port_string)


def _address(host, port, default_port):
    """Parse the address from HOST and the --port option.

    An explicit --port takes precedence over a port given in HOST.
    """
    host, parsed_port = _parse_address(host, default_port)
    if port is not None:
        return host, _parse_port(port)
    return host, parsed_port


def _configure_logging(level_name):
    """Log to stderr at the named level, or disable logging entirely."""
    level = None
    if level_name:
        for name, candidate in _LOG_LEVELS:
            if name in level_name.lower():
                level = candidate
                break
    if level is None:
        logging.disable(logging.CRITICAL)
    else:
        logging.basicConfig(format=_LOG_FORMAT, level=level)


def _password(password):
    if password is None:
        password = os.environ.get(_PASSWORD_VARIABLE)
    if password is None:
        password = getpass.getpass("Password: ")
    return password


def _format_players(player_list, as_json):
    if as_json:
        return json.dumps([player._asdict() for player in player_list.players])
    lines = [
        "Got player info: found {} online!".format(len(player_list.players)),
        "Name\tUID\tSteamID",
    ]
    for player in player_list.players:
        lines.append("{0.name}\t{0.unique_id}\t{0.steam_id}".format(player))
    return "\n".join(lines)


def _format_memory(mem_info, as_json):
    if as_json:
        values = mem_info._asdict()
        values.update(used=mem_info.used, used_percent=mem_info.used_percent)
        return json.dumps(values)
    lines = ["{}: {} kB".format(field, value)
             for field, value in mem_info._asdict().items()]
    if mem_info.used_percent is not None:
        lines.append("used: {} kB ({:.2f}%)".format(
            mem_info.used, mem_info.used_percent))
    return "\n".join(lines)


def _format(key, value, as_json, template="{}"):
    if as_json:
        return json.dumps({key: value})
    return template.format(value)


def _run_commands(server_, arguments):
    """Run the RCON actions requested by ``arguments`` in order."""
    as_json = arguments["--json"]
    if arguments["--list"]:
        player_list = server_.players()
        for error in player_list.errors:
            print("Skipped player row {0.line_number}: "
                  "{0.reason}".format(error), file=sys.stderr)
        print(_format_players(player_list, as_json))
    if arguments["--server-version"]:
        print(_format("version", server_.version().version, as_json))
    if arguments["--save"]:
        saved = server_.save().success
        print(_format("saved", saved, as_json, "Saved: {}"))
    if arguments["--shutdown"] is not None:
        try:
            delay = int(arguments["--shutdown"])
        except ValueError:
            raise rcon.RCONArgumentError(
                "Shutdown delay {!r} is not a "
                "number".format(arguments["--shutdown"]))
        shutdown = server_.shutdown(
            delay, arguments["--shutdown-message"] or "").success
        print(_format("shutdown", shutdown, as_json, "Shutdown: {}"))
    if arguments["--broadcast"] is not None:
        print(_format("broadcast",
                      server_.broadcast(arguments["--broadcast"]).text,
                      as_json))
    if arguments["--command"] is not None:
        print(_format("response",
                      server_.command(arguments["--command"]).text,
                      as_json))


def _run(arguments):
    """Carry out all the actions requested by ``arguments``."""
    host = arguments["HOST"] or "localhost"
    port = arguments["--port"]
    uses_rcon = (
        any(arguments[option] for option
            in ("--list", "--server-version", "--save"))
        or any(arguments[option] is not None for option
               in ("--shutdown", "--broadcast", "--command"))
    )
    if not (uses_rcon or arguments["--memory"] or arguments["--memory-ssh"]):
        raise docopt.DocoptExit("No action given")
    if uses_rcon:
        address = _address(host, port, rcon.DEFAULT_PORT)
        try:
            timeout = float(arguments["--timeout"])
        except ValueError:
            raise ValueError(
                "Timeout {!r} is not a number".format(arguments["--timeout"]))
        connection = rcon.RCON(
            address,
            _password(arguments["--password"]),
            timeout=timeout,
            multi_part=not arguments["--no-multi"],
        )
        with connection:
            _run_commands(
                server.PalworldServer(
                    connection, arguments["--replace-broadcast-space"]),
                arguments,
            )
    if arguments["--memory"]:
        print(_format_memory(memory.local_memory(), arguments["--json"]))
    elif arguments["--memory-ssh"]:
        ssh_host, ssh_port = _address(host, port, memory.DEFAULT_SSH_PORT)
        mem_info = memory.remote_memory(
            ssh_host, arguments["--username"], ssh_port)
        print(_format_memory(mem_info, arguments["--json"]))


def _main(argv=None):
    """Palworld RCON client entry-point.

    :param argv: command line options.

    :returns: the process exit status.
    """
    arguments = docopt.docopt(_USAGE.format(program="palworld-rcon"), argv)
    _configure_logging(arguments["--debug-level"])
    try:
        _run(arguments)
    except (rcon.RCONError, memory.RemoteCommandError, ValueError) as exc:
        log.debug("Failed", exc_info=True)
        print("Error: {}".format(exc), file=sys.stderr)
        return 1
    log.debug("Done.")
    return 0


def main():
    """Run :func:`_main` and exit with its status."""
    sys.exit(_main())


if __name__ == "__main__":
    main()
