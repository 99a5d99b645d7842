# -*- coding: utf-8 -*-

"""Typed results of Palworld RCON commands and their parsers.

Every parser takes the text of a complete response and returns one of
the result types below. Parsers raise :exc:`ValueError` when the text
doesn't have the expected shape; the dispatcher turns that into a
:exc:`palworld.rcon.RCONMalformedResponseError`.
"""

import collections
import logging
import re


log = logging.getLogger(__name__)

_PLAYER_LIST_HEADER = ("name", "playeruid", "steamid")
_REGEX_VERSION = re.compile(r"\[(v[0-9]{1,9}(?:\.[0-9]{1,9})+)\]\s*(.*)")
_STRIP = "\x00 \t\r\n"


_Player = collections.namedtuple("_Player", ("name", "unique_id", "steam_id"))


class Player(_Player):
    """A player connected to the server.

    :ivar str name: the player's character name.
    :ivar str unique_id: the player's unique ID on the server.
    :ivar str steam_id: the player's Steam ID.
    """

    __slots__ = ()

    def __repr__(self):
        return "<{0.__class__.__name__} '{0.name}' {0.steam_id}>".format(self)


RowError = collections.namedtuple("RowError", ("line_number", "line", "reason"))
RowError.__doc__ = """A player list row that couldn't be parsed.

:ivar int line_number: one-based line number within the response.
:ivar str line: the offending line.
:ivar str reason: why it couldn't be parsed.
"""


class PlayerList(collections.namedtuple("PlayerList", ("players", "errors"))):
    """Result of ``ShowPlayers``.

    Rows that can't be parsed don't invalidate the whole list. They are
    collected in :attr:`errors` instead.

    :ivar tuple players: the parsed :class:`Player`\\ s in server order.
    :ivar tuple errors: a :class:`RowError` for each bad row.
    """

    __slots__ = ()


class Version(collections.namedtuple("Version", ("text", "version", "name"))):
    """Result of ``Info``.

    :ivar str text: the normalised response line, e.g. ``Welcome to Pal
        Server[v0.1.3.0] Default Palworld Server``.
    :ivar str version: the version string, e.g. ``v0.1.3.0``.
    :ivar str name: the server name following the version.
    """

    __slots__ = ()

    def __str__(self):
        return self.version


class Ack(collections.namedtuple("Ack", ("text", "success"))):
    """Acknowledgement of a command that doesn't return data.

    :ivar str text: the normalised response.
    :ivar bool success: whether the response confirms the command.
    """

    __slots__ = ()


class RawText(collections.namedtuple("RawText", ("text",))):
    """Response to an arbitrary command."""

    __slots__ = ()

    def __str__(self):
        return self.text


def normalise(text):
    """Trim trailing NUL and whitespace characters."""
    return text.rstrip(_STRIP)


def parse_players(text, delimiter=","):
    """Parse a ``ShowPlayers`` response.

    The response is a header line followed by a line per player with
    the name, unique ID and Steam ID separated by ``delimiter``. The
    header is optional and blank lines are ignored.

    :raises ValueError: if there are rows but none of them could be
        parsed.

    :returns: a :class:`PlayerList`.
    """
    players = []
    errors = []
    header = True
    for line_number, line in enumerate(text.splitlines(), 1):
        line = line.strip(_STRIP)
        if not line:
            continue
        fields = tuple(field.strip(_STRIP) for field in line.split(delimiter))
        if header:
            header = False
            if tuple(field.lower() for field in fields) == _PLAYER_LIST_HEADER:
                continue
        if len(fields) != len(Player._fields):
            reason = "Expected {} fields but got {}".format(
                len(Player._fields), len(fields))
            log.warning("Bad player row %i %r: %s", line_number, line, reason)
            errors.append(RowError(line_number, line, reason))
            continue
        players.append(Player(*fields))
    if errors and not players:
        raise ValueError("None of the {} player rows "
                         "could be parsed".format(len(errors)))
    return PlayerList(tuple(players), tuple(errors))


def parse_version(text):
    """Parse an ``Info`` response.

    :raises ValueError: if there's no bracketed version in the response.

    :returns: a :class:`Version`.
    """
    text = normalise(text).strip()
    match = _REGEX_VERSION.search(text)
    if not match:
        raise ValueError("No version in response")
    version, name = match.groups()
    return Version(text, version, name.strip())


def parse_ack(text, marker, prefix=False):
    """Parse the response to a command that only acknowledges.

    :param str marker: the text that signifies success.
    :param bool prefix: whether the response must start with the marker
        rather than just contain it.

    :returns: an :class:`Ack`.
    """
    text = normalise(text)
    if prefix:
        success = text.lstrip().startswith(marker)
    else:
        success = marker in text
    return Ack(text, success)


def parse_raw(text):
    """Parse the response to an arbitrary command."""
    return RawText(normalise(text))
