"""Utilities for testing."""

import copy
import functools
import select
import socketserver
import struct

import palworld.rcon


class UnexpectedRCONMessage(Exception):
    """Raised when an RCON request wasn't expected."""


class ExpectedRCONMessage(palworld.rcon.RCONMessage):
    """Request expected by :class:`TestRCONServer`.

    This class should not be instantiated directly. Instead use the
    :meth:`TestRCONServer.expect` factory to create them.

    Instances of this class can be configured to respond to the request
    using :meth:`respond`, :meth:`respond_close`, etc..
    """

    def __init__(self, id_, type_, body):
        palworld.rcon.RCONMessage.__init__(self, id_, type_, body)
        self.responses = []

    def respond(self, id_, type_, body):
        """Respond to the request with a message.

        The parameters for this method are the same as those given to
        the initialiser of :class:`palworld.rcon.RCONMessage`. The created
        message will be encoded and sent to the client.
        """
        self.respond_raw(palworld.rcon.RCONMessage(id_, type_, body).encode())

    def respond_raw(self, bytes_):
        """Respond by sending the given bytes as they are.

        Use this to send malformed or fragmented frames.
        """
        response = functools.partial(_TestRCONHandler.send_bytes, bytes_=bytes_)
        self.responses.append(response)

    def respond_close(self):
        """Respond by closing the connection."""
        self.responses.append(_TestRCONHandler.close)

    def respond_terminate(self, id_):
        """Respond by sending the end of a multi-part response.

        This is what a server sends when it mirrors the empty
        ``RESPONSE_VALUE`` that :class:`palworld.rcon.RCON` sends after
        every command in multi-part mode: an empty ``RESPONSE_VALUE``
        followed by the ``0x00010000`` trailer.
        """
        self.respond(
            id_, palworld.rcon.RCONMessage.Type.RESPONSE_VALUE, b"")
        self.respond_trailer(id_)

    def respond_trailer(self, id_):
        """Respond with the trailer that follows a mirrored probe.

        The trailer's body contains NUL bytes so it can't be built by
        :meth:`palworld.rcon.RCONMessage.encode`; the frame is packed
        by hand instead.
        """
        body = b"\x00\x01\x00\x00"
        header = struct.pack(
            "<iii", 10 + len(body), id_,
            palworld.rcon.RCONMessage.Type.RESPONSE_VALUE)
        self.respond_raw(header + body + b"\x00\x00")


class _TestRCONHandler(socketserver.BaseRequestHandler):
    """Request handler for :class:`TestRCONServer`."""

    def _decode_messages(self):
        """Decode buffer into discrete RCON messages.

        This may consume the buffer, either in whole or part.

        :returns: an iterator of :class:`palworld.rcon.RCONMessage`s.
        """
        while self._buffer:
            try:
                message, self._buffer = \
                    palworld.rcon.RCONMessage.decode(self._buffer)
            except palworld.rcon.RCONIncompleteMessage:
                return
            else:
                yield message

    def _handle_request(self, message):
        """Handle individual RCON requests.

        Given a RCON request this will check that it matches the next
        expected request by comparing the request's ID, type and body
        attributes. If they all match, then each of the responses
        configured for the request is called.

        :param palworld.rcon.RCONMessage: the request to handle.

        :raises UnexpectedRCONMessage: if given message does not match
            the expected request.
        """
        self.server.received.append(message)
        if not self._expectations:
            raise UnexpectedRCONMessage(
                "Unexpected message {}".format(message))
        expected = self._expectations.pop(0)
        for attribute in ['id', 'type', 'body']:
            a_message = getattr(message, attribute)
            a_expected = getattr(expected, attribute)
            if a_message != a_expected:
                raise UnexpectedRCONMessage(
                    "Expected {} == {!r}, got {!r}".format(
                        attribute, a_expected, a_message))
        for response in expected.responses:
            response(self)

    def send_bytes(self, bytes_):
        self.request.sendall(bytes_)

    def close(self):
        self._closed = True
        self.request.close()

    def setup(self):
        self._buffer = b""
        self._closed = False
        self._expectations = self.server.expectations()

    def handle(self):
        """Handle incoming requests.

        This will continually read incoming requests from the connected
        socket assigned to this handler. If the connected client closes
        the connection this method will exit.
        """
        while not self._closed:
            ready, _, _ = select.select([self.request], [], [], 0.05)
            if ready:
                received = self.request.recv(4096)
                if not received:
                    return
                self._buffer += received
                try:
                    for message in self._decode_messages():
                        self._handle_request(message)
                        if self._closed:
                            return
                except (UnexpectedRCONMessage,
                        palworld.rcon.RCONFrameError) as exc:
                    self.server.errors.append(exc)
                    return


class TestRCONServer(socketserver.TCPServer):
    """Stub RCON server for testing.

    This class provides a simple RCON server which can be configured to
    respond to requests in certain ways. The idea is that this can be used
    in testing to fake the responses from a real Palworld server.

    Specifically, each instance of this server can be configured to
    :meth:`expect` requests in a certain order. For each expected request
    there can be any number of responses for it. Each connection to the
    server will expect the exact same requests.

    All expected requests should be configured *before* connecting the
    client to the server.

    Every request the server receives is recorded in :attr:`received`, in
    the order they arrived, and any unexpected request in :attr:`errors`.

    :param address: the address the server should bind to. By default it
        will use a random port on the loopback interface. In such cases
        the actual address in use can be retrieved via the
        :attr:`server_address` attribute.
    """

    allow_reuse_address = True

    def __init__(self, address=("127.0.0.1", 0)):
        socketserver.TCPServer.__init__(self, address, _TestRCONHandler)
        self._expectations = []
        self.received = []
        self.errors = []

    def expect(self, id_, type_, body):
        """Expect a RCON request.

        The parameters for this method are the same as those passed to the
        initialiser of :class:`ExpectedRCONMessage`.

        :returns: the corresponding :class:`ExpectedRCONMessage`.
        """
        self._expectations.append(ExpectedRCONMessage(id_, type_, body))
        return self._expectations[-1]

    def expect_command(self, id_, body):
        """Expect a command followed by the multi-part probe.

        :returns: a tuple of the :class:`ExpectedRCONMessage` for the
            command and the one for the probe.
        """
        command = self.expect(
            id_, palworld.rcon.RCONMessage.Type.EXECCOMMAND, body)
        probe = self.expect(
            id_, palworld.rcon.RCONMessage.Type.RESPONSE_VALUE, b"")
        return command, probe

    def expectations(self):
        """Get a copy of all the expectations.

        :returns: a deep copy of all the :class:`ExpectedRCONMessage`
            configured for the server.
        """
        return copy.deepcopy(self._expectations)
