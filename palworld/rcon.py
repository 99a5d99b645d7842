# -*- coding: utf-8 -*-

"""Palworld dedicated server remote console (RCON) protocol engine."""

import enum
import functools
import logging
import select
import socket
import struct
import threading
import time


log = logging.getLogger(__name__)

#: Port a Palworld dedicated server listens for RCON connections on.
DEFAULT_PORT = 25575
#: Seconds of silence tolerated whilst waiting for a response.
DEFAULT_TIMEOUT = 10.0
#: Largest body Source-style servers put into a single response packet.
DEFAULT_FRAGMENT_SIZE = 4096
#: Largest declared message size accepted before the frame is rejected.
MAX_MESSAGE_SIZE = 16 * DEFAULT_FRAGMENT_SIZE

_MAX_REQUEST_ID = 2 ** 31 - 1
# Source servers follow the mirrored multi-part probe with this packet.
_MULTI_PART_TRAILER = b"\x00\x01\x00\x00"


class RCONError(Exception):
    """Base exception for all RCON-related errors."""


class RCONMessageError(RCONError):
    """Raised for errors encoding or decoding RCON messages."""


class RCONPayloadError(RCONMessageError):
    """Raised when a message body can't be framed."""


class RCONFrameError(RCONMessageError):
    """Raised when bytes from the server don't form a valid message."""


class RCONIncompleteMessage(RCONMessageError):
    """Raised when a buffer only holds the beginning of a message.

    This doesn't signify a failure. The caller should read more bytes
    and attempt to decode the buffer again.
    """


class RCONCommunicationError(RCONError):
    """Used for propagating socket-related errors."""


class RCONConnectionClosedError(RCONCommunicationError):
    """Raised when the connection is closed or has been closed."""


class RCONTimeoutError(RCONError):
    """Raised when a timeout occurs waiting for a response."""


class RCONAuthenticationError(RCONError):
    """Raised for failed authentication."""

    def __init__(self, message="Wrong password"):
        super().__init__(message)


class RCONNotAuthenticatedError(RCONError):
    """Raised when a command is issued on an unauthenticated connection."""


class RCONArgumentError(RCONError, ValueError):
    """Raised for invalid command arguments."""


class RCONMalformedResponseError(RCONError):
    """Raised when a response doesn't have the expected shape.

    :ivar str command: the command the response is for.
    :ivar body: the raw response. This is text if it could be decoded,
        otherwise bytes.
    """

    def __init__(self, message, command=None, body=None):
        super().__init__(
            "{} (command {!r}, response {!r})".format(message, command, body))
        self.command = command
        self.body = body


class RCONMessage(object):
    """Represents a RCON request or response."""

    ENCODING = "utf-8"

    class Type(enum.IntEnum):
        """Message types corresponding to ``SERVERDATA_`` constants."""

        RESPONSE_VALUE = 0
        AUTH_RESPONSE = 2
        EXECCOMMAND = 2
        AUTH = 3

    def __init__(self, id_, type_, body_or_text):
        self.id = int(id_)
        self.type = self.Type(type_)
        if isinstance(body_or_text, bytes):
            self.body = body_or_text
        else:
            self.body = b""
            self.text = body_or_text

    def __repr__(self):
        return ("<{0.__class__.__name__} "
                "{0.id} {0.type.name} {1}B>").format(self, len(self.body))

    def __eq__(self, other):
        if not isinstance(other, RCONMessage):
            return NotImplemented
        return ((self.id, self.type, self.body)
                == (other.id, other.type, other.body))

    __hash__ = None

    @property
    def text(self):
        """Get the body of the message as Unicode.

        :raises UnicodeDecodeError: if the body cannot be decoded.

        :returns: the body of the message as a Unicode string.
        """
        return self.body.decode(self.ENCODING)

    @text.setter
    def text(self, text):
        """Set the body of the message as Unicode.

        :param str text: the Unicode string to set the body as.

        :raises UnicodeEncodeError: if the string cannot be encoded.
        """
        self.body = text.encode(self.ENCODING)

    def encode(self):
        """Encode message to a bytestring.

        The frame is the little-endian size of the rest of the message,
        followed by the ID, type, body and two NUL terminators.

        :raises RCONPayloadError: if the body contains a NUL byte or the
            ID doesn't fit in a signed 32-bit integer.
        """
        if b"\x00" in self.body:
            raise RCONPayloadError(
                "Message body can't contain NUL bytes: {!r}".format(self.body))
        terminated_body = self.body + b"\x00\x00"
        size = struct.calcsize("<ii") + len(terminated_body)
        try:
            return struct.pack(
                "<iii", size, self.id, self.type) + terminated_body
        except struct.error as exc:
            raise RCONPayloadError("Couldn't encode {!r}: {}".format(self, exc))

    @classmethod
    def decode(cls, buffer_):
        """Decode a message from a bytestring.

        This will attempt to decode a single message from the start of the
        given buffer. If the buffer contains more than a single message then
        this must be called multiple times.

        :raises RCONIncompleteMessage: if the buffer holds less than a
            whole message.
        :raises RCONFrameError: if the buffer doesn't start with a valid
            message.

        :returns: a tuple containing the decoded :class:`RCONMessage` and
            the remnants of the buffer. If the buffer contained exactly one
            message then the remaning buffer will be empty.
        """
        size_field_length = struct.calcsize("<i")
        if len(buffer_) < size_field_length:
            raise RCONIncompleteMessage(
                "Need at least {} bytes; got "
                "{}".format(size_field_length, len(buffer_)))
        size_field, raw_message = \
            buffer_[:size_field_length], buffer_[size_field_length:]
        size = struct.unpack("<i", size_field)[0]
        fixed_fields_size = struct.calcsize("<ii")
        if size < fixed_fields_size + 2:
            raise RCONFrameError("Invalid message size {}".format(size))
        if size > MAX_MESSAGE_SIZE:
            raise RCONFrameError(
                "Message size {} exceeds {}".format(size, MAX_MESSAGE_SIZE))
        if len(raw_message) < size:
            raise RCONIncompleteMessage(
                "Message is {} bytes long "
                "but got {}".format(size, len(raw_message)))
        message, remainder = raw_message[:size], raw_message[size:]
        fixed_fields, body_and_terminators = \
            message[:fixed_fields_size], message[fixed_fields_size:]
        id_, type_ = struct.unpack("<ii", fixed_fields)
        body, terminators = body_and_terminators[:-2], body_and_terminators[-2:]
        if terminators != b"\x00\x00":
            raise RCONFrameError(
                "Message not NUL-terminated: {!r}".format(terminators))
        try:
            return cls(id_, type_, body), remainder
        except ValueError:
            raise RCONFrameError("Unknown message type {}".format(type_))


class _ResponseBuffer(object):
    """Utility class to buffer RCON responses.

    Bytes read from the socket are fed into the buffer which decodes them
    into whole messages. Messages can then be popped off the buffer in
    the order they were received. Trailing bytes of a partially received
    message are kept until the rest of the message is fed.
    """

    def __init__(self):
        self._buffer = b""
        self._messages = []

    def __len__(self):
        return len(self._messages)

    def pop(self):
        """Pop first received message from the buffer.

        :raises RCONError: if there are no whole messages in the buffer.

        :returns: the oldest message in the buffer as a :class:`RCONMessage`.
        """
        if not self._messages:
            raise RCONError("Response buffer is empty")
        return self._messages.pop(0)

    def clear(self):
        """Clear both the byte and message buffers."""
        log.debug(
            "Buffer cleared; %i bytes, %i messages",
            len(self._buffer),
            len(self._messages),
        )
        self._buffer = b""
        del self._messages[:]

    def feed(self, bytes_):
        """Feed bytes into the buffer.

        :raises RCONFrameError: if the bytes don't decode as a message.
        """
        self._buffer += bytes_
        while self._buffer:
            try:
                message, self._buffer = RCONMessage.decode(self._buffer)
            except RCONIncompleteMessage:
                return
            log.debug("Received message %r", message)
            self._messages.append(message)


class _PendingResponse(object):
    """Aggregates the parts of a single response.

    A server may split a large response over multiple ``RESPONSE_VALUE``
    messages which all echo the ID of the request. Parts are collected
    until the response is deemed complete, which depends on the
    termination heuristic in use:

    Multi-part
        An empty ``RESPONSE_VALUE`` ends the response. Clients provoke
        one by sending an empty ``RESPONSE_VALUE`` straight after the
        command; the server mirrors it once everything else is sent.

        https://developer.valvesoftware.com/wiki/Source_RCON_Protocol#Multiple-packet_Responses

    Single-part
        A part with a body shorter than ``fragment_size`` ends the
        response. If ``fragment_size`` is ``None`` then the first part
        always does.

    :param int id_: ID of the request the response belongs to.
    :param bool multi_part: which heuristic to use.
    :param fragment_size: the size threshold for single-part responses.
    """

    def __init__(self, id_, multi_part=True, fragment_size=None):
        self.id = id_
        self.complete = False
        self._multi_part = multi_part
        self._fragment_size = fragment_size
        self._parts = []

    def __repr__(self):
        return ("<{0.__class__.__name__} {0.id} "
                "{1} parts{2}>").format(
                    self, len(self._parts), " complete" if self.complete else "")

    @property
    def body(self):
        """Concatenated bodies of all parts received so far."""
        return b"".join(self._parts)

    def add(self, message):
        """Add a part to the response.

        :param RCONMessage message: a ``RESPONSE_VALUE`` with the same ID
            as the response.

        :raises RCONError: if the response is already complete.

        :returns: whether or not the response is now complete.
        """
        if self.complete:
            raise RCONError("Response {} is already complete".format(self.id))
        if self._multi_part:
            if message.body:
                self._parts.append(message.body)
            else:
                self.complete = True
        else:
            self._parts.append(message.body)
            if (self._fragment_size is None
                    or len(message.body) < self._fragment_size):
                self.complete = True
        return self.complete

    def message(self):
        """Get the aggregated response as a single :class:`RCONMessage`."""
        return RCONMessage(self.id, RCONMessage.Type.RESPONSE_VALUE, self.body)


class RCON(object):
    """Represents an RCON connection.

    Requests are strictly serialised: each request waits for its complete
    response before another one can be sent. Every request gets its own ID
    so that late responses to an earlier request can be told apart and
    discarded.

    :param address: a tuple containing the host and port of the server.
    :param str password: the RCON admin password.
    :param timeout: the number of seconds to wait for the server to send
        anything before giving up on a request. The timer is restarted
        whenever more bytes arrive. If ``None`` then wait forever.
    :param bool multi_part: whether to use the multi-part termination
        heuristic or the single-part one. See :class:`_PendingResponse`.
    :param fragment_size: body size under which a part completes a
        single-part response.
    :param str encoding: encoding used for command and response text.
    """

    class State(enum.Enum):
        """Authentication states of a connection."""

        UNAUTHENTICATED = "unauthenticated"
        AWAITING_AUTH_RESPONSE = "awaiting auth response"
        AUTHENTICATED = "authenticated"
        REJECTED = "rejected"

    def __init__(self, address, password, timeout=DEFAULT_TIMEOUT,
                 multi_part=True, fragment_size=DEFAULT_FRAGMENT_SIZE,
                 encoding=RCONMessage.ENCODING):
        self._address = address
        self._password = password
        self._timeout = timeout if timeout else None
        self._multi_part = multi_part
        self._fragment_size = fragment_size
        self._encoding = encoding
        self._state = self.State.UNAUTHENTICATED
        self._socket = None
        self._closed = False
        self._last_id = 0
        self._lock = threading.Lock()
        self._responses = _ResponseBuffer()

    def __enter__(self):
        self.connect()
        try:
            self.authenticate()
        except RCONError:
            self.close()
            raise
        return self

    def __exit__(self, type_, value, traceback):
        self.close()

    def __call__(self, command):
        """Invoke a command.

        This is a higher-level version of :meth:`execute` that only
        returns the response body.

        :raises RCONMessageError: if the response body couldn't be decoded
            into a Unicode string.

        :returns: the response to the command as a Unicode string.
        """
        response = self.execute(command)
        try:
            return response.body.decode(self._encoding)
        except UnicodeDecodeError as exc:
            raise RCONMessageError("Couldn't decode response: {}".format(exc))

    @property
    def connected(self):
        """Determine if a connection has been made.

        .. note::
            Strictly speaking this does not guarantee that any subsequent
            attempt to execute a command will succeed as the underlying
            socket may be closed by the server at any time. It merely
            indicates that a previous call to :meth:`connect` was
            successful.
        """
        return bool(self._socket)

    @property
    def state(self):
        """The :class:`State` of the connection's authentication."""
        return self._state

    @property
    def authenticated(self):
        """Determine if the connection is authenticated."""
        return self._state is self.State.AUTHENTICATED

    @property
    def closed(self):
        """Determine if the connection has been closed."""
        return self._closed

    @property
    def encoding(self):
        """Encoding used for command and response text."""
        return self._encoding

    def _ensure(state, value=True,
                error=RCONError):  # pylint: disable=no-self-argument
        """Decorator to ensure a connection is in a specific state.

        Use this to wrap a method so that it'll only be executed when
        the given attribute is identical to ``value``. The returned
        function will raise ``error`` if the condition is not met.

        Additionally, this decorator will modify the docstring of the
        wrapped function to include a sphinx-style ``:raises:`` directive
        documenting the valid state for the call.

        :param str state: the state attribute to check.
        :param value: the required value for the attribute.
        :param error: the :exc:`RCONError` subclass to raise.
        """
        if isinstance(value, bool):
            requirement = "{} {}".format("be" if value else "not be", state)
        else:
            requirement = "have {} {}".format(state, value.value)

        def decorator(function):  # pylint: disable=missing-docstring

            @functools.wraps(function)
            def wrapper(instance, *args, **kwargs):  # pylint: disable=missing-docstring
                if getattr(instance, state) is not value:
                    raise error("Must {}".format(requirement))
                return function(instance, *args, **kwargs)

            # pylint: disable=no-member
            if not wrapper.__doc__.endswith("\n"):
                wrapper.__doc__ += "\n"
            wrapper.__doc__ += "\n:raises {}: if it doesn't {}.".format(
                error.__name__, requirement)
            # pylint: enable=no-member
            return wrapper

        return decorator

    def _next_id(self):
        """Allocate the ID for the next request.

        IDs increase monotonically over the lifetime of the connection.
        Once the largest signed 32-bit integer has been used the counter
        wraps round to one. Zero is never used as some servers treat it
        as a sentinel.
        """
        if self._last_id >= _MAX_REQUEST_ID:
            log.debug("Request ID wrapped around")
            self._last_id = 0
        self._last_id += 1
        return self._last_id

    def _message(self, id_, type_, body):
        """Create a message, encoding a text body as configured."""
        if not isinstance(body, bytes):
            try:
                body = body.encode(self._encoding)
            except UnicodeEncodeError as exc:
                raise RCONPayloadError(
                    "Couldn't encode body: {}".format(exc))
        return RCONMessage(id_, type_, body)

    def _read(self, timeout):
        """Read bytes from the socket into the response buffer.

        :param timeout: the number of seconds to wait for the socket to
            become readable.

        :raises RCONCommunicationError: for any unexpected socket-related
            error. In such cases the connection will also be closed.
        :raises RCONConnectionClosedError: if the socket is closed by
            the server. The connection will also be closed.
        :raises RCONFrameError: if the server sent bytes that aren't a
            valid message. The connection will also be closed.

        :returns: whether any bytes were read.
        """
        try:
            ready, _, _ = select.select([self._socket], [], [], timeout)
            if not ready:
                return False
            i_bytes = self._socket.recv(4096)
        except socket.error as exc:
            self.close()
            raise RCONCommunicationError("Couldn't receive: {}".format(exc))
        if not i_bytes:
            self.close()
            raise RCONConnectionClosedError("Connection closed by server")
        try:
            self._responses.feed(i_bytes)
        except RCONFrameError:
            self.close()
            raise
        return True

    def _receive(self, timeout):
        """Receive a single message from the server.

        This will wait for a whole message to be received for as long as
        bytes keep arriving, only giving up once there's been no activity
        for ``timeout`` seconds.

        :raises RCONCommunicationError: if the socket is closed by the
            server or for any other unexpected socket-related error.
        :raises RCONTimeoutError: if no message is received in time. The
            connection is closed as it's unknown what state it's in.

        :returns: the :class:`RCONMessage` that was received.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._responses:
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.close()
                    raise RCONTimeoutError(
                        "No response within {} seconds".format(timeout))
            if self._read(remaining) and deadline is not None:
                deadline = time.monotonic() + timeout
        return self._responses.pop()

    @_ensure("connected", False)
    @_ensure("closed", False)
    def connect(self):
        """Create a connection to a server.

        :raises RCONCommunicationError: if the connection can't be made.
        """
        log.debug("Connecting to %s", self._address)
        try:
            self._socket = socket.create_connection(
                self._address, self._timeout)
        except socket.error as exc:
            raise RCONCommunicationError(
                "Couldn't connect to {0[0]}:{0[1]}: {1}".format(
                    self._address, exc))

    @_ensure("connected", error=RCONConnectionClosedError)
    def send(self, message):
        """Send a message to the server.

        :param RCONMessage message: the message to send.

        :raises RCONPayloadError: if the message can't be encoded.
        :raises RCONCommunicationError: if writing to the socket fails.
            The connection is closed as part of the message may have been
            written.
        """
        encoded = message.encode()
        log.debug("Sending message %r", message)
        try:
            self._socket.sendall(encoded)
        except socket.error as exc:
            self.close()
            raise RCONCommunicationError("Couldn't send: {}".format(exc))

    @_ensure("connected", error=RCONConnectionClosedError)
    def receive(self, timeout=None):
        """Receive the next message from the server.

        :param timeout: the number of idle seconds to wait for. If not
            given the connection-global timeout is used.

        :raises RCONCommunicationError: if the socket is closed by the
            server or for any other unexpected socket-related error.
        :raises RCONTimeoutError: if nothing is received in time.

        :returns: the received :class:`RCONMessage`.
        """
        if timeout is None:
            timeout = self._timeout
        return self._receive(timeout)

    @_ensure("state", State.UNAUTHENTICATED)
    @_ensure("connected", error=RCONConnectionClosedError)
    def authenticate(self, timeout=None):
        """Authenticate with the server.

        This sends an authentication message to the connected server
        containing the password. If the password is correct the server
        sends back an ``AUTH_RESPONSE`` echoing the request ID and will
        allow all subsequent commands to be executed. If the password is
        wrong the ``AUTH_RESPONSE`` has an ID of -1 instead; the
        connection is closed and can't be used any more.

        Authentication can only be attempted once per connection.

        :param timeout: the number of seconds to wait for a response. If
            not given the connection-global timeout is used.

        :raises RCONAuthenticationError: if the password was rejected.
        :raises RCONCommunicationError: if the connection fails. The
            connection must be discarded.
        :raises RCONTimeoutError: if the server takes too long to respond.
            The connection will be closed in this case as well.
        """
        if timeout is None:
            timeout = self._timeout
        id_ = self._next_id()
        request = self._message(id_, RCONMessage.Type.AUTH, self._password)
        self._state = self.State.AWAITING_AUTH_RESPONSE
        self.send(request)
        response = self._receive(timeout)
        # It appears that some servers send an empty RESPONSE_VALUE
        # before the AUTH_RESPONSE so skip over it.
        while response.type is not response.Type.AUTH_RESPONSE:
            log.debug("Skipping message %r before auth response", response)
            response = self._receive(timeout)
        if response.id == -1:
            self._state = self.State.REJECTED
            self.close()
            raise RCONAuthenticationError
        if response.id != id_:
            self._state = self.State.REJECTED
            self.close()
            raise RCONAuthenticationError(
                "Auth response ID {} doesn't match request "
                "ID {}".format(response.id, id_))
        log.debug("Authenticated with %s", self._address)
        self._state = self.State.AUTHENTICATED

    def close(self):
        """Close connection to a server."""
        if self.connected:
            self._socket.close()
            self._closed = True
            self._socket = None
            self._responses.clear()

    @_ensure("authenticated", error=RCONNotAuthenticatedError)
    @_ensure("connected", error=RCONConnectionClosedError)
    def request(self, type_, body, timeout=None):
        """Send a request and wait for the complete response to it.

        The request is given the next ID from the connection's counter.
        Response parts are then collected until the termination heuristic
        deems the response complete. Messages with any other ID are late
        responses to an earlier request and are discarded.

        :param RCONMessage.Type type_: the type of message to send.
        :param body: the body of the message to send as either a bytestring
            or Unicode string.
        :param timeout: the number of idle seconds to wait for. If not
            given the connection-global timeout is used.

        :raises RCONPayloadError: if the body can't be sent.
        :raises RCONCommunicationError: if the socket is closed or in any
            other erroneous state whilst issuing the request or receiving
            the response.
        :raises RCONTimeoutError: if the response doesn't complete in
            time. The connection is closed.

        :returns: the aggregated response as a :class:`RCONMessage`.
        """
        if timeout is None:
            timeout = self._timeout
        with self._lock:
            id_ = self._next_id()
            pending = _PendingResponse(
                id_, self._multi_part, self._fragment_size)
            self.send(self._message(id_, type_, body))
            if self._multi_part:
                self.send(RCONMessage(
                    id_, RCONMessage.Type.RESPONSE_VALUE, b""))
            while not pending.complete:
                message = self._receive(timeout)
                if message.id != id_:
                    if message.body == _MULTI_PART_TRAILER:
                        log.debug("Discarding trailer %r", message)
                    else:
                        log.warning(
                            "Discarding message %r; expected ID %i",
                            message, id_)
                    continue
                if message.type is not message.Type.RESPONSE_VALUE:
                    log.warning("Unexpected message %r", message)
                    continue
                pending.add(message)
            log.debug("Completed response %r", pending)
            return pending.message()

    def execute(self, command, timeout=None):
        """Invoke a command.

        Invokes the given command on the connected server and blocks (up
        to the timeout) for the complete response.

        :param str command: the command to execute.
        :param timeout: the number of idle seconds to wait for. If not
            given the connection-global timeout is used.

        :raises RCONNotAuthenticatedError: if not authenticated.
        :raises RCONConnectionClosedError: if not connected.
        :raises RCONCommunicationError: if the socket is closed or in any
            other erroneous state whilst issuing the request or receiving
            the response.
        :raises RCONTimeoutError: if the timeout is reached waiting for a
            response. The connection is closed.

        :returns: the response to the command as a :class:`RCONMessage`.
        """
        log.debug("Executing %r", command)
        return self.request(RCONMessage.Type.EXECCOMMAND, command, timeout)

    del _ensure


def execute(address, password, command, **kwargs):
    """Execute a command on an RCON server.

    This is a *very* high-level interface which connects to the given
    RCON server using the provided credentials and executes a command.

    :param address: the address of the server to connect to as a tuple
        containing the host as a string and the port as an integer.
    :param str password: the password to use to authenticate the connection.
    :param str command: the command to execute on the server.

    Any other keyword arguments are passed on to :class:`RCON`.

    :raises RCONCommunicationError: if a connection to the RCON server
        could not be made.
    :raise RCONAuthenticationError: if authentication failed.
    :raises RCONMessageError: if the response body couldn't be decoded
        into a Unicode string.

    :returns: the response to the command as a Unicode string.
    """
    with RCON(address, password, **kwargs) as rcon:
        return rcon(command)
