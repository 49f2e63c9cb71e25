"""
Process-wide algorithm preferences.

Older SSH servers only speak algorithms that asyncssh no longer offers by
default (SHA-1 key exchange, CBC ciphers, MD5 MACs, DSA host keys). To keep
talking to them, every session created by this package appends those
legacy names to asyncssh's default preference lists.

This is a deliberate compatibility-over-security trade-off. It applies to
every session created afterwards, never to a single session, and the
legacy names always come after the engine's own defaults so modern servers
still negotiate modern algorithms.
"""
from __future__ import annotations

import logging
import threading
from typing import Any

from asyncssh.encryption import get_default_encryption_algs, get_encryption_algs
from asyncssh.kex import get_default_kex_algs, get_kex_algs
from asyncssh.mac import get_default_mac_algs, get_mac_algs
from asyncssh.public_key import get_default_public_key_algs, get_public_key_algs

log = logging.getLogger("sftp_session.algorithms")

KEX = "kex"
SERVER_HOST_KEY = "server_host_key"
CIPHER_S2C = "cipher.s2c"
CIPHER_C2S = "cipher.c2s"
MAC_S2C = "mac.s2c"
MAC_C2S = "mac.c2s"
PUBKEY_ACCEPTED = "PubkeyAcceptedAlgorithms"

_LEGACY_KEX = (
    "diffie-hellman-group14-sha1",
    "diffie-hellman-group-exchange-sha1",
    "diffie-hellman-group1-sha1",
)
_LEGACY_HOST_KEY = ("ssh-rsa", "ssh-dss")
_LEGACY_CIPHERS = (
    "aes128-cbc",
    "3des-ctr",
    "3des-cbc",
    "blowfish-cbc",
    "aes192-cbc",
    "aes256-cbc",
)
_LEGACY_MACS = ("hmac-md5", "hmac-sha1", "hmac-sha1-96", "hmac-md5-96")

COMPATIBILITY_ALGORITHMS: dict[str, tuple[str, ...]] = {
    KEX: _LEGACY_KEX,
    SERVER_HOST_KEY: _LEGACY_HOST_KEY,
    CIPHER_S2C: _LEGACY_CIPHERS,
    CIPHER_C2S: _LEGACY_CIPHERS,
    MAC_S2C: _LEGACY_MACS,
    MAC_C2S: _LEGACY_MACS,
    PUBKEY_ACCEPTED: _LEGACY_HOST_KEY,
}

_lock = threading.Lock()
_preferences: dict[str, list[str]] | None = None
_additions: dict[str, list[str]] | None = None


def _decode(algs: Any) -> list[str]:
    return [a.decode("ascii") if isinstance(a, bytes) else a for a in algs]


def _engine_lists() -> dict[str, tuple[list[str], list[str]]]:
    """Return (defaults, supported) per category from asyncssh."""
    kex = (_decode(get_default_kex_algs()), _decode(get_kex_algs()))
    host_key = (_decode(get_default_public_key_algs()), _decode(get_public_key_algs()))
    cipher = (_decode(get_default_encryption_algs()), _decode(get_encryption_algs()))
    mac = (_decode(get_default_mac_algs()), _decode(get_mac_algs()))
    return {
        KEX: kex,
        SERVER_HOST_KEY: host_key,
        CIPHER_S2C: cipher,
        CIPHER_C2S: cipher,
        MAC_S2C: mac,
        MAC_C2S: mac,
        PUBKEY_ACCEPTED: host_key,
    }


def extend_preferences(
    defaults: list[str],
    supported: list[str],
    legacy: tuple[str, ...],
) -> list[str]:
    """
    Append legacy names to a default list.

    Names the engine cannot negotiate are skipped and names already present
    are not repeated, so applying this to its own output is a no-op.
    """
    result = list(defaults)
    for name in legacy:
        if name in supported and name not in result:
            result.append(name)
    return result


def ensure_compatibility_algorithms_registered() -> dict[str, list[str]]:
    """
    Register the legacy algorithms, once per process.

    Safe to call before every connection and from concurrent threads; all
    callers observe the same lists.

    Returns:
        Copy of the effective preference lists by category
    """
    global _preferences, _additions
    with _lock:
        if _preferences is None:
            computed: dict[str, list[str]] = {}
            added: dict[str, list[str]] = {}
            for category, (defaults, supported) in _engine_lists().items():
                legacy = COMPATIBILITY_ALGORITHMS[category]
                computed[category] = extend_preferences(defaults, supported, legacy)
                added[category] = computed[category][len(defaults):]
                skipped = [n for n in legacy if n not in supported]
                if skipped:
                    log.debug(
                        "Legacy %s algorithms not available in this engine: %s",
                        category, ",".join(skipped),
                    )
            _preferences = computed
            _additions = added
            log.debug("Registered compatibility algorithms")
        return {k: list(v) for k, v in _preferences.items()}


def get_algorithm_preferences() -> dict[str, list[str]]:
    """Return the effective preference lists, registering them if needed."""
    return ensure_compatibility_algorithms_registered()


def algorithm_connect_options() -> dict[str, str]:
    """
    Map the legacy additions onto asyncssh connect options.

    Uses asyncssh's "+name,..." form, which appends to whatever default the
    engine picks for the connection (for host keys, that default follows
    the known_hosts entries). asyncssh takes one list per algorithm kind
    for both directions; the two direction entries are always identical.
    """
    ensure_compatibility_algorithms_registered()
    assert _additions is not None
    options = {
        "kex_algs": _additions[KEX],
        "server_host_key_algs": _additions[SERVER_HOST_KEY],
        "encryption_algs": _additions[CIPHER_C2S],
        "mac_algs": _additions[MAC_C2S],
        "signature_algs": _additions[PUBKEY_ACCEPTED],
    }
    return {name: "+" + ",".join(algs) for name, algs in options.items() if algs}


def _reset_for_tests() -> None:
    global _preferences, _additions
    with _lock:
        _preferences = None
        _additions = None
