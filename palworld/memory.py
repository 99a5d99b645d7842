# -*- coding: utf-8 -*-

"""Memory statistics for the machine hosting a Palworld server.

Palworld servers are notorious for leaking memory so it's useful to keep
an eye on it alongside the RCON commands. Statistics can either be taken
from the local machine or from a remote one over SSH.
"""

import collections
import logging
import re
import subprocess

import psutil

from palworld import rcon


log = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22
DEFAULT_SSH_USERNAME = "root"
MEMINFO_COMMAND = "cat /proc/meminfo | grep -e 'Mem' -e 'Cached' -e 'Buffers'"

_REGEX_MEMINFO = re.compile(r"^(\w+):\s+([0-9]+) kB\s*$", re.MULTILINE)
_MEMINFO_FIELDS = {
    "MemTotal": "mem_total",
    "MemFree": "mem_free",
    "MemAvailable": "mem_available",
    "Buffers": "buffers",
    "Cached": "cached",
}


class RemoteCommandError(Exception):
    """Raised when a command couldn't be run on a remote host.

    :ivar str output: anything the command wrote to stderr.
    """

    def __init__(self, message, output=""):
        super().__init__(message)
        self.output = output


_MemInfo = collections.namedtuple("_MemInfo", _MEMINFO_FIELDS.values())


class MemInfo(_MemInfo):
    """Memory statistics, all in kibibytes.

    :ivar int mem_total: total usable memory.
    :ivar int mem_free: memory not used for anything.
    :ivar int mem_available: memory available to start new applications
        without swapping.
    :ivar int buffers: memory used by kernel buffers.
    :ivar int cached: memory used by the page cache.
    """

    __slots__ = ()

    @property
    def used(self):
        """Memory in use, or ``None`` if the figures don't add up."""
        used = self.mem_total - self.mem_available
        return used if used >= 0 else None

    @property
    def used_percent(self):
        """Percentage of memory in use, or ``None`` if unknown."""
        if self.used is None or not self.mem_total:
            return None
        return 100.0 * self.used / self.mem_total


def parse_meminfo(text):
    """Parse ``/proc/meminfo`` formatted text.

    Lines for fields other than those of :class:`MemInfo` are ignored.
    Fields other than ``MemTotal`` that are missing are zero.

    :raises ValueError: if there's no ``MemTotal`` line.

    :returns: a :class:`MemInfo`.
    """
    values = dict.fromkeys(MemInfo._fields, 0)
    found = set()
    for key, kb in _REGEX_MEMINFO.findall(text):
        if key in _MEMINFO_FIELDS:
            values[_MEMINFO_FIELDS[key]] = int(kb)
            found.add(key)
    if "MemTotal" not in found:
        raise ValueError("No MemTotal in memory information")
    return MemInfo(**values)


def local_memory():
    """Get memory statistics for this machine.

    :returns: a :class:`MemInfo`.
    """
    virtual = psutil.virtual_memory()
    return MemInfo(
        mem_total=virtual.total // 1024,
        mem_free=virtual.free // 1024,
        mem_available=virtual.available // 1024,
        buffers=getattr(virtual, "buffers", 0) // 1024,
        cached=getattr(virtual, "cached", 0) // 1024,
    )


def run_remote_command(host, username, command,
                       port=DEFAULT_SSH_PORT, timeout=30):
    """Run a shell command on a remote host over SSH.

    This uses the system's ``ssh`` client in batch mode, so the host must
    accept key-based authentication for ``username``.

    :param str host: the host to connect to.
    :param str username: the user to log in as.
    :param str command: the shell command to run.
    :param int port: the SSH port of the host.
    :param timeout: the number of seconds to wait for the command.

    :raises RemoteCommandError: if ``ssh`` can't be run, times out or
        exits with a non-zero status.

    :returns: the command's standard output as a Unicode string.
    """
    args = [
        "ssh",
        "-p", str(port),
        "-o", "BatchMode=yes",
        "{}@{}".format(username, host),
        command,
    ]
    log.debug("Running %r", args)
    try:
        completed = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
            check=True,
        )
    except subprocess.CalledProcessError as exc:
        raise RemoteCommandError(
            "{!r} on {} exited with status {}".format(
                command, host, exc.returncode),
            exc.stderr.decode("utf-8", "replace"),
        )
    except subprocess.TimeoutExpired:
        raise RemoteCommandError(
            "{!r} on {} timed out after {} seconds".format(
                command, host, timeout))
    except OSError as exc:
        raise RemoteCommandError("Couldn't run ssh: {}".format(exc))
    return completed.stdout.decode("utf-8", "replace")


def remote_memory(host, username=DEFAULT_SSH_USERNAME,
                  port=DEFAULT_SSH_PORT, runner=run_remote_command):
    """Get memory statistics for a remote machine over SSH.

    :param runner: the function used to run the command, with the same
        signature as :func:`run_remote_command`.

    :raises RemoteCommandError: if the command couldn't be run.
    :raises RCONMalformedResponseError: if the output isn't memory
        information.

    :returns: a :class:`MemInfo`.
    """
    output = runner(host, username, MEMINFO_COMMAND, port=port)
    try:
        return parse_meminfo(output)
    except ValueError as exc:
        raise rcon.RCONMalformedResponseError(
            str(exc), MEMINFO_COMMAND, output)
