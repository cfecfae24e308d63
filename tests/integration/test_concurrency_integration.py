import threading
import time

from putter.services.archiver import Archiver
from putter.services.compressor import Compressor
from putter.services.hasher import fingerprint_bytes
from putter.services.saver import DocumentSaver
from putter.services.state import DocumentState
from putter.services.upload import stage_bytes


def _build(tmp_path):
    wiki = tmp_path / "index.html"
    wiki.write_bytes(b"version-0" * 1000)
    state = DocumentState.load(wiki)
    saver = DocumentSaver(state, Archiver(tmp_path / "old", "%Y.html", enabled=False), Compressor(enabled=False))
    return wiki, state, saver


def test_readers_never_see_mismatched_etag_and_bytes(tmp_path):
    wiki, state, saver = _build(tmp_path)
    stop = threading.Event()
    mismatches: list[tuple[str, str]] = []
    reads = [0]

    def consistent_reader():
        while not stop.is_set():
            with state.read() as snapshot:
                handle = wiki.open("rb")
            with handle:
                data = handle.read()
            reads[0] += 1
            if fingerprint_bytes(data) != snapshot.etag:
                mismatches.append((snapshot.etag, fingerprint_bytes(data)))

    readers = [threading.Thread(target=consistent_reader) for _ in range(4)]
    for thread in readers:
        thread.start()
    deadline = time.monotonic() + 5
    while reads[0] == 0 and time.monotonic() < deadline:
        time.sleep(0.001)

    for i in range(1, 30):
        with stage_bytes(tmp_path, "index.html", [f"version-{i}".encode() * 1000]) as staged:
            saver.save(staged, state.current().etag)

    stop.set()
    for thread in readers:
        thread.join(5)

    assert mismatches == []
    assert reads[0] > 0
    assert state.current().etag == fingerprint_bytes(b"version-29" * 1000)


def test_concurrent_conditional_saves_serialize_and_one_wins(tmp_path):
    wiki, state, saver = _build(tmp_path)
    base = state.current().etag
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def writer(payload: bytes):
        with stage_bytes(tmp_path, "index.html", [payload]) as staged:
            barrier.wait(5)
            try:
                saver.save(staged, base)
                result = "ok"
            except Exception as exc:
                result = type(exc).__name__
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=writer, args=(p,)) for p in (b"left", b"right")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert sorted(outcomes) == ["PreconditionFailedError", "ok"]
    assert fingerprint_bytes(wiki.read_bytes()) == state.current().etag


def test_http_reads_during_saves_match_their_etag(tmp_path):
    from fastapi.testclient import TestClient

    from putter.core.config import Settings
    from putter.main import create_app

    wiki = tmp_path / "index.html"
    wiki.write_bytes(b"<html>version-0</html>" * 500)
    cfg = Settings(WIKI_PATH=str(wiki), ARCHIVE_DIR=str(tmp_path / "old"), SERVE_ARCHIVE=False)
    stop = threading.Event()
    mismatches: list[tuple[str, str, str]] = []
    reads = [0]
    counter_lock = threading.Lock()

    with TestClient(create_app(cfg)) as client:

        def http_reader(encoding: str):
            while not stop.is_set():
                response = client.get("/", headers={"Accept-Encoding": encoding})
                actual = fingerprint_bytes(response.content)
                with counter_lock:
                    reads[0] += 1
                    if response.status_code != 200 or actual != response.headers["etag"]:
                        mismatches.append((encoding, response.headers.get("etag", ""), actual))

        readers = [threading.Thread(target=http_reader, args=(enc,)) for enc in ("identity", "gzip", "identity", "gzip")]
        for thread in readers:
            thread.start()
        deadline = time.monotonic() + 5
        while reads[0] == 0 and time.monotonic() < deadline:
            time.sleep(0.001)

        for i in range(1, 25):
            etag = client.head("/").headers["etag"]
            saved = client.put("/", content=f"<html>version-{i}</html>".encode() * 500, headers={"If-Match": etag})
            assert saved.status_code == 200

        stop.set()
        for thread in readers:
            thread.join(10)

    assert reads[0] > 0
    assert mismatches == []
