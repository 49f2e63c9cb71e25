"""
Wipeable secret storage for proxy credentials.

Provides SecureBytes, which:
- Keeps the secret in a ctypes buffer (not GC-managed)
- Never reveals the secret through str(), bytes() or repr()
- Has an explicit wipe() that zeroes the buffer in place
- Raises SecretWiped if read after wiping
"""
import ctypes
import warnings
from typing import Any


class SecretWiped(Exception):
    """Raised when reading a SecureBytes after wipe()."""
    pass


class SecureBytes:
    """
    A byte secret held in controlled memory that can be positively wiped.

    Usage:
        password = SecureBytes(b"secret")
        proxy_auth(password.reveal())
        password.wipe()  # buffer is now all zero bytes

    Note: the value passed to __init__ is still referenced by whoever
    created it. Callers that care should pass a bytearray and clear it.
    """

    __slots__ = ('_buffer', '_length', '_wiped')

    def __init__(self, value: str | bytes | bytearray):
        assert isinstance(value, (str, bytes, bytearray)), (
            f"SecureBytes requires str, bytes or bytearray, got {type(value).__name__}"
        )

        data = value.encode('utf-8') if isinstance(value, str) else bytes(value)

        self._length = len(data)
        self._buffer = (ctypes.c_char * self._length)()
        ctypes.memmove(self._buffer, data, self._length)
        self._wiped = False

    def _check_wiped(self) -> None:
        if self._wiped:
            raise SecretWiped("SecureBytes has been wiped and cannot be read")

    def __str__(self) -> str:
        return "<wiped>" if self._wiped else "<hidden>"

    def __bytes__(self) -> bytes:
        return b"<wiped>" if self._wiped else b"<hidden>"

    def __repr__(self) -> str:
        return "SecureBytes(<wiped>)" if self._wiped else "SecureBytes(<hidden>)"

    def reveal(self) -> bytes:
        """
        Deliberately read the secret.

        Raises:
            SecretWiped: If wipe() has been called
        """
        self._check_wiped()
        return bytes(self._buffer)

    def reveal_str(self) -> str:
        """Read the secret decoded as UTF-8."""
        return self.reveal().decode('utf-8')

    def raw(self) -> bytes:
        """Return the current buffer contents, wiped or not."""
        return bytes(self._buffer)

    def __len__(self) -> int:
        self._check_wiped()
        return self._length

    def __bool__(self) -> bool:
        self._check_wiped()
        return self._length > 0

    def __eq__(self, other: Any) -> bool:
        self._check_wiped()
        if isinstance(other, SecureBytes):
            other._check_wiped()
            return bytes(self._buffer) == bytes(other._buffer)
        if isinstance(other, (bytes, bytearray)):
            return bytes(self._buffer) == bytes(other)
        return NotImplemented

    __hash__ = None

    def wipe(self) -> None:
        """
        Zero the buffer in place. Idempotent.
        """
        if not self._wiped:
            ctypes.memset(self._buffer, 0, self._length)
            assert bytes(self._buffer) == b"\x00" * self._length, (
                "Wipe failed: buffer still holds non-zero bytes"
            )
            self._wiped = True

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    def __del__(self):
        # __init__ may have failed before the buffer existed
        if getattr(self, "_wiped", True):
            return
        try:
            self.wipe()
        except Exception as e:
            warnings.warn(
                f"SecureBytes.__del__ failed to wipe: {e}",
                RuntimeWarning,
                stacklevel=1,
            )
