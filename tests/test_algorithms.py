"""
Tests for the process-wide algorithm preferences.

Tests cover:
- Legacy names appended after the engine defaults
- Idempotence and thread safety of registration
- Mapping onto asyncssh connect options
"""
from __future__ import annotations

import threading
from typing import Generator

import pytest

from sftp_session import algorithms
from sftp_session.algorithms import (
    CIPHER_C2S,
    CIPHER_S2C,
    COMPATIBILITY_ALGORITHMS,
    KEX,
    MAC_C2S,
    MAC_S2C,
    algorithm_connect_options,
    ensure_compatibility_algorithms_registered,
    extend_preferences,
    get_algorithm_preferences,
)


@pytest.fixture(autouse=True)
def fresh_registration() -> Generator[None, None, None]:
    algorithms._reset_for_tests()
    yield
    algorithms._reset_for_tests()


class TestExtendPreferences:
    """Test the list merge rule."""

    def test_appends_after_defaults(self) -> None:
        """Legacy names come after every default."""
        result = extend_preferences(["a", "b"], ["a", "b", "x", "y"], ("x", "y"))
        assert result == ["a", "b", "x", "y"]

    def test_skips_unsupported(self) -> None:
        """Names the engine does not support are dropped."""
        result = extend_preferences(["a"], ["a", "x"], ("x", "nope"))
        assert result == ["a", "x"]

    def test_no_duplicates(self) -> None:
        """Names already in the defaults are not repeated."""
        result = extend_preferences(["a", "x"], ["a", "x"], ("x",))
        assert result == ["a", "x"]

    def test_idempotent(self) -> None:
        """Applying the rule to its own output changes nothing."""
        once = extend_preferences(["a"], ["a", "x", "y"], ("x", "y"))
        twice = extend_preferences(once, ["a", "x", "y"], ("x", "y"))
        assert once == twice


class TestRegistration:
    """Test the once-per-process registration."""

    def test_every_category_present(self) -> None:
        """All legacy categories get a preference list."""
        prefs = ensure_compatibility_algorithms_registered()
        assert set(prefs) == set(COMPATIBILITY_ALGORITHMS)

    def test_directions_identical(self) -> None:
        """Both directions get the same cipher and MAC lists."""
        prefs = get_algorithm_preferences()
        assert prefs[CIPHER_S2C] == prefs[CIPHER_C2S]
        assert prefs[MAC_S2C] == prefs[MAC_C2S]

    def test_defaults_keep_priority(self) -> None:
        """Legacy names never come before engine defaults."""
        from asyncssh.kex import get_default_kex_algs

        defaults = [a.decode("ascii") for a in get_default_kex_algs()]
        prefs = get_algorithm_preferences()
        assert prefs[KEX][:len(defaults)] == defaults

    def test_legacy_kex_registered(self) -> None:
        """At least one SHA-1 key exchange is made available."""
        prefs = get_algorithm_preferences()
        assert "diffie-hellman-group14-sha1" in prefs[KEX]

    def test_repeated_calls_equal(self) -> None:
        """Calling twice yields identical lists."""
        assert ensure_compatibility_algorithms_registered() == \
            ensure_compatibility_algorithms_registered()

    def test_returns_copies(self) -> None:
        """Mutating the result does not affect later calls."""
        prefs = get_algorithm_preferences()
        prefs[KEX].clear()
        assert get_algorithm_preferences()[KEX]

    def test_concurrent_registration(self) -> None:
        """Concurrent first calls all observe the same lists."""
        results = []
        barrier = threading.Barrier(8)

        def register() -> None:
            barrier.wait()
            results.append(ensure_compatibility_algorithms_registered())

        threads = [threading.Thread(target=register) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 8
        assert all(r == results[0] for r in results)


class TestConnectOptions:
    """Test mapping onto asyncssh options."""

    def test_uses_append_syntax(self) -> None:
        """Each option appends to the engine default with '+'."""
        options = algorithm_connect_options()
        assert options
        for value in options.values():
            assert value.startswith("+")

    def test_known_option_names(self) -> None:
        """Only asyncssh algorithm options are produced."""
        options = algorithm_connect_options()
        assert set(options) <= {
            "kex_algs", "server_host_key_algs", "encryption_algs",
            "mac_algs", "signature_algs",
        }

    def test_only_additions_listed(self) -> None:
        """Default algorithms are not repeated in the append list."""
        from asyncssh.kex import get_default_kex_algs

        defaults = {a.decode("ascii") for a in get_default_kex_algs()}
        kex = algorithm_connect_options().get("kex_algs", "+")[1:].split(",")
        assert not defaults & set(filter(None, kex))
