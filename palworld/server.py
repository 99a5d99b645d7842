# -*- coding: utf-8 -*-

"""Palworld server administration over RCON."""

import collections
import enum
import functools
import logging
import re

from palworld import rcon
from palworld import results


log = logging.getLogger(__name__)

DEFAULT_SPACE_REPLACEMENT = "_"
_REGEX_WHITESPACE = re.compile(r"\s")


class Command(enum.Enum):
    """Commands understood by :class:`PalworldServer`."""

    SHOW_PLAYERS = "ShowPlayers"
    INFO = "Info"
    SAVE = "Save"
    SHUTDOWN = "Shutdown"
    BROADCAST = "Broadcast"
    RAW = "raw"


_CommandEntry = collections.namedtuple("_CommandEntry", ("template", "parser"))

_COMMANDS = {
    Command.SHOW_PLAYERS: _CommandEntry(
        "ShowPlayers", results.parse_players),
    Command.INFO: _CommandEntry(
        "Info", results.parse_version),
    Command.SAVE: _CommandEntry(
        "Save",
        functools.partial(results.parse_ack, marker="Complete Save"),
    ),
    Command.SHUTDOWN: _CommandEntry(
        "Shutdown {delay} {message}",
        functools.partial(
            results.parse_ack, marker="The server will shut down in"),
    ),
    Command.BROADCAST: _CommandEntry(
        "Broadcast {message}",
        functools.partial(
            results.parse_ack, marker="Broadcasted:", prefix=True),
    ),
    Command.RAW: _CommandEntry(
        "{text}", results.parse_raw),
}


def sanitise(message, replacement=DEFAULT_SPACE_REPLACEMENT):
    """Make a message safe to send as a command argument.

    Palworld splits command arguments on spaces so a message must not
    contain any. Leading and trailing whitespace is dropped and each
    remaining whitespace character is replaced by ``replacement``.

    :raises RCONArgumentError: if ``replacement`` is empty or contains
        whitespace or NUL characters itself.

    :returns: the sanitised message.
    """
    if (not isinstance(replacement, str) or not replacement
            or _REGEX_WHITESPACE.search(replacement)
            or "\x00" in replacement):
        raise rcon.RCONArgumentError(
            "Invalid space replacement {!r}".format(replacement))
    return _REGEX_WHITESPACE.sub(replacement, message.strip())


class PalworldServer(object):
    """Administers a Palworld server through an RCON connection.

    Each method sends a single command over the connection and waits for
    its response before returning, so commands reach the server in the
    order they're called.

    .. code-block:: python

        with palworld.rcon.RCON(("localhost", 25575), "secret") as rcon:
            server = palworld.server.PalworldServer(rcon)
            for player in server.players().players:
                print(player.name)

    :param rcon_: an authenticated :class:`palworld.rcon.RCON`.
    :param str space_replacement: what whitespace in broadcast and
        shutdown messages is replaced with.
    """

    def __init__(self, rcon_, space_replacement=DEFAULT_SPACE_REPLACEMENT):
        self._rcon = rcon_
        self._space_replacement = space_replacement

    def dispatch(self, command, **arguments):
        """Run a command on the server and parse the response.

        :param Command command: the command to run.
        :param arguments: values for the placeholders of the command's
            template. These must already be validated.

        :raises RCONNotAuthenticatedError: if the connection isn't
            authenticated.
        :raises RCONMalformedResponseError: if the response can't be
            decoded or parsed.

        :returns: the parsed result, as determined by the command.
        """
        if not self._rcon.authenticated:
            raise rcon.RCONNotAuthenticatedError(
                "Can't run {}; connection not authenticated".format(
                    command.name))
        entry = _COMMANDS[command]
        text = entry.template.format(**arguments)
        if command is not Command.RAW:
            text = text.rstrip()
        log.debug("Dispatching %s as %r", command.name, text)
        response = self._rcon.execute(text)
        try:
            body = response.body.decode(self._rcon.encoding)
        except UnicodeDecodeError as exc:
            raise rcon.RCONMalformedResponseError(
                "Couldn't decode response: {}".format(exc),
                text, response.body)
        try:
            return entry.parser(body)
        except ValueError as exc:
            raise rcon.RCONMalformedResponseError(str(exc), text, body)

    def players(self):
        """Get the players currently on the server.

        :returns: a :class:`palworld.results.PlayerList`.
        """
        return self.dispatch(Command.SHOW_PLAYERS)

    def version(self):
        """Get the server's version.

        :returns: a :class:`palworld.results.Version`.
        """
        return self.dispatch(Command.INFO)

    def save(self):
        """Save the world.

        :returns: a :class:`palworld.results.Ack`.
        """
        return self.dispatch(Command.SAVE)

    def shutdown(self, delay, message=""):
        """Shut the server down after a delay.

        :param int delay: how many seconds to wait before shutting down.
        :param str message: shown to players, with its whitespace replaced.

        :raises RCONArgumentError: if ``delay`` isn't a non-negative
            integer.

        :returns: a :class:`palworld.results.Ack`.
        """
        if (not isinstance(delay, int) or isinstance(delay, bool)
                or delay < 0):
            raise rcon.RCONArgumentError(
                "Delay must be a non-negative integer, "
                "not {!r}".format(delay))
        return self.dispatch(
            Command.SHUTDOWN,
            delay=delay,
            message=sanitise(message, self._space_replacement),
        )

    def broadcast(self, message, space_replacement=None):
        """Broadcast a message to all players.

        :param str message: the message to broadcast.
        :param str space_replacement: overrides the replacement given to
            the initialiser.

        :raises RCONArgumentError: if the message is blank or the
            replacement is invalid.

        :returns: a :class:`palworld.results.Ack`.
        """
        if space_replacement is None:
            space_replacement = self._space_replacement
        sanitised = sanitise(message, space_replacement)
        if not sanitised:
            raise rcon.RCONArgumentError("Can't broadcast a blank message")
        return self.dispatch(Command.BROADCAST, message=sanitised)

    def command(self, text):
        """Run an arbitrary command.

        :param str text: the command, sent verbatim.

        :raises RCONArgumentError: if the command is empty.

        :returns: a :class:`palworld.results.RawText`.
        """
        if not text:
            raise rcon.RCONArgumentError("Command must not be empty")
        return self.dispatch(Command.RAW, text=text)
