"""Shared fixtures for nvmmcp tests."""

import pytest

from nvmmcp.connection import NeovimConnection


@pytest.fixture
def socket_path(tmp_path):
    """A file standing in for the editor socket; existence is all connect() checks."""
    path = tmp_path / "nvim.sock"
    path.touch()
    return str(path)


@pytest.fixture
def make_connection(socket_path):
    """Build a connection whose attach step hands back the given fake editor(s)."""
    created = []

    def _make(*editors, **kwargs):
        queue = list(editors)

        def factory(path):
            if len(queue) > 1:
                return queue.pop(0)
            return queue[0]

        kwargs.setdefault("rpc_timeout_ms", 500)
        kwargs.setdefault("probe_timeout_ms", 300)
        kwargs.setdefault("connect_timeout_ms", 500)
        connection = NeovimConnection(kwargs.pop("socket", socket_path), client_factory=factory, **kwargs)
        created.append((connection, editors))
        return connection

    yield _make

    for connection, editors in created:
        for editor in editors:
            editor.release.set()
        connection.reset()
