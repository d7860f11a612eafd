import json
import threading
import time

from fakes import single_window_editor

from nvmmcp.connection import ABSENT, LIVE, NeovimConnection
from nvmmcp.errors import CONNECT_REFUSED, CONNECT_TIMEOUT, SOCKET_MISSING, RemoteProtocolError


def test_connect_fails_fast_when_socket_is_missing(tmp_path):
    attempts = []
    missing = str(tmp_path / "nope" / "nvim.sock")
    connection = NeovimConnection(missing, client_factory=lambda path: attempts.append(path))

    assert connection.connect() is False
    assert attempts == []
    assert connection.last_failure["kind"] == SOCKET_MISSING
    assert missing in connection.last_failure["message"]
    assert not connection.is_connected()
    assert connection.state == ABSENT


def test_connect_stores_handle(make_connection):
    editor = single_window_editor(["hello"])
    connection = make_connection(editor)

    assert connection.connect() is True
    assert connection.is_connected()
    assert connection.state == LIVE
    assert connection.get_handle() is editor
    assert connection.last_failure == {}


def test_connect_refused_leaves_no_connection(socket_path):
    def refuse(path):
        raise ConnectionRefusedError(111, "Connection refused")

    connection = NeovimConnection(socket_path, client_factory=refuse)
    assert connection.connect() is False
    assert connection.last_failure["kind"] == CONNECT_REFUSED
    assert not connection.is_connected()


def test_connect_times_out_on_unresponsive_editor(socket_path):
    release = threading.Event()

    def hang(path):
        release.wait()

    connection = NeovimConnection(socket_path, connect_timeout_ms=50, client_factory=hang)
    started = time.monotonic()
    try:
        assert connection.connect() is False
    finally:
        release.set()
    assert time.monotonic() - started < 1.0
    assert connection.last_failure["kind"] == CONNECT_TIMEOUT
    assert connection.state == ABSENT


def test_is_alive_is_stable_without_remote_changes(make_connection):
    editor = single_window_editor(["hello"])
    connection = make_connection(editor)
    assert connection.is_alive() is False

    connection.connect()
    assert connection.is_alive() is True
    assert connection.is_alive() is True
    assert len(editor.called("api_info")) == 2


def test_is_alive_false_when_probe_fails(make_connection):
    editor = single_window_editor(["hello"])
    editor.fail("api_info", RemoteProtocolError("boom"))
    connection = make_connection(editor)
    connection.connect()

    assert connection.is_alive() is False
    assert connection.is_alive() is False
    assert connection.is_connected()


def test_is_alive_false_when_probe_hangs(make_connection):
    editor = single_window_editor(["hello"])
    editor.hang("api_info")
    connection = make_connection(editor, probe_timeout_ms=50)
    connection.connect()

    started = time.monotonic()
    assert connection.is_alive() is False
    assert connection.is_alive() is False
    assert time.monotonic() - started < 1.0


def test_reset_is_idempotent_and_closes_client(make_connection):
    editor = single_window_editor(["hello"])
    connection = make_connection(editor)
    connection.connect()

    connection.reset()
    connection.reset()
    assert not connection.is_connected()
    assert connection.state == ABSENT
    for _ in range(100):
        if editor.closed:
            break
        time.sleep(0.01)
    assert editor.closed


def test_reconnect_after_reset_uses_new_handle(make_connection):
    first = single_window_editor(["one"])
    second = single_window_editor(["two"])
    connection = make_connection(first, second)

    assert connection.connect()
    connection.reset()
    assert connection.connect()
    assert connection.get_handle() is second
    assert connection.connect_count == 2


def test_call_and_guarded_run_against_handle(make_connection):
    editor = single_window_editor(["hello", "world"])
    connection = make_connection(editor)
    connection.connect()

    assert connection.call(lambda client: client.list_windows()[0].number, "windows") == 1
    result = connection.guarded(lambda client: client.request("nvim_bogus"), "bogus")
    assert not result.ok
    assert "Invalid method" in result.message


def test_event_log_records_lifecycle(make_connection, tmp_path):
    log_path = tmp_path / "events.jsonl"
    editor = single_window_editor(["hello"])
    connection = make_connection(editor, event_log_path=str(log_path))
    connection.connect()
    connection.reset()

    events = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
    assert events == ["connect_ok", "reset"]


def test_session_attaching_after_timeout_is_closed(socket_path):
    release = threading.Event()
    late = single_window_editor(["late"])

    def slow_attach(path):
        release.wait()
        return late

    connection = NeovimConnection(socket_path, connect_timeout_ms=50, client_factory=slow_attach)
    assert connection.connect() is False
    assert connection.last_failure["kind"] == CONNECT_TIMEOUT

    release.set()
    for _ in range(100):
        if late.closed:
            break
        time.sleep(0.01)
    assert late.closed
    assert not connection.is_connected()
