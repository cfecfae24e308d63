import gzip
from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from putter.services import saver as saver_module
from putter.services.archiver import Archiver
from putter.services.compressor import Compressor
from putter.services.errors import ArchiveError, CompressionError, PreconditionFailedError, PromotionError
from putter.services.hasher import fingerprint_bytes
from putter.services.saver import DocumentSaver
from putter.services.state import DocumentState
from putter.services.upload import stage_bytes


def _ticking_clock():
    ticks = count()
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return lambda: start + timedelta(seconds=next(ticks))


def _build(tmp_path, *, archive=True, compress=True, initial=b"v1"):
    wiki = tmp_path / "index.html"
    wiki.write_bytes(initial)
    state = DocumentState.load(wiki)
    archiver = Archiver(tmp_path / "old", "%Y-%m-%d-%H-%M-%S.html", enabled=archive, clock=_ticking_clock())
    saver = DocumentSaver(state, archiver, Compressor(enabled=compress))
    saver.build_initial_variant()
    return wiki, state, archiver, saver


def _save(tmp_path, saver, payload, if_match=None):
    with stage_bytes(tmp_path, "index.html", [payload]) as staged:
        return saver.save(staged, if_match)


def test_conditional_save_with_current_token_commits_new_fingerprint(tmp_path):
    wiki, state, archiver, saver = _build(tmp_path)
    f1 = state.current().etag

    result = _save(tmp_path, saver, b"v2", if_match=f1)

    assert result.etag == fingerprint_bytes(b"v2")
    assert state.current().etag == result.etag
    assert wiki.read_bytes() == b"v2"
    assert [p.read_bytes() for p in archiver.list_entries()] == [b"v1"]
    assert gzip.decompress(state.paths.variant.read_bytes()) == b"v2"
    assert state.current().variant_current is True


def test_stale_token_is_rejected_without_side_effects(tmp_path):
    wiki, state, archiver, saver = _build(tmp_path)
    f1 = state.current().etag
    _save(tmp_path, saver, b"v2", if_match=f1)
    f2 = state.current().etag

    with pytest.raises(PreconditionFailedError) as excinfo:
        _save(tmp_path, saver, b"v3", if_match=f1)

    assert excinfo.value.server_etag == f2
    assert wiki.read_bytes() == b"v2"
    assert state.current().etag == f2
    assert len(archiver.list_entries()) == 1
    assert not state.lock.write_held


def test_save_without_token_always_overwrites(tmp_path):
    wiki, state, archiver, saver = _build(tmp_path)
    with state.begin_write() as txn:
        txn.commit('"somebody-else"', txn.snapshot.variant_etag)

    result = _save(tmp_path, saver, b"v2")

    assert result.etag == fingerprint_bytes(b"v2")
    assert wiki.read_bytes() == b"v2"


def test_archive_holds_every_replaced_version(tmp_path):
    _, _, archiver, saver = _build(tmp_path, initial=b"v0")
    for i in range(1, 4):
        _save(tmp_path, saver, f"v{i}".encode())

    assert [p.read_bytes() for p in archiver.list_entries()] == [b"v0", b"v1", b"v2"]


def test_archive_failure_aborts_before_promotion(tmp_path):
    wiki, state, archiver, saver = _build(tmp_path)
    f1 = state.current().etag
    (tmp_path / "old").write_text("blocks the archive directory")

    with pytest.raises(ArchiveError):
        _save(tmp_path, saver, b"v2", if_match=f1)

    assert wiki.read_bytes() == b"v1"
    assert state.current().etag == f1
    assert not state.lock.write_held


def test_promotion_failure_keeps_previous_fingerprint(tmp_path, monkeypatch):
    wiki, state, _, saver = _build(tmp_path, archive=False)
    f1 = state.current().etag

    def failing_promote(staged, document):
        raise PromotionError("rename refused")

    monkeypatch.setattr(saver_module, "promote", failing_promote)

    with pytest.raises(PromotionError):
        _save(tmp_path, saver, b"v2")

    assert wiki.read_bytes() == b"v1"
    assert state.current().etag == f1


def test_compression_failure_commits_write_and_drops_stale_variant(tmp_path, monkeypatch):
    wiki, state, _, saver = _build(tmp_path)
    assert state.paths.variant.exists()

    def failing_compress(source, target):
        raise CompressionError("disk full")

    monkeypatch.setattr(saver.compressor, "compress", failing_compress)

    result = _save(tmp_path, saver, b"v2")

    assert result.compressed is False
    assert state.current().etag == fingerprint_bytes(b"v2")
    assert state.current().variant_current is False
    assert not state.paths.variant.exists()
    assert wiki.read_bytes() == b"v2"


def test_disabled_archive_and_compression(tmp_path):
    wiki, state, archiver, saver = _build(tmp_path, archive=False, compress=False)

    result = _save(tmp_path, saver, b"v2")

    assert result.archived_to is None
    assert result.compressed is False
    assert archiver.list_entries() == []
    assert not state.paths.variant.exists()


def test_unexpected_compression_error_still_commits_promoted_bytes(tmp_path, monkeypatch):
    wiki, state, _, saver = _build(tmp_path)

    def failing_compress(source, target):
        raise PermissionError("cannot remove temporary variant")

    monkeypatch.setattr(saver.compressor, "compress", failing_compress)

    result = _save(tmp_path, saver, b"v2")

    assert wiki.read_bytes() == b"v2"
    assert state.current().etag == result.etag == fingerprint_bytes(b"v2")
    assert state.current().variant_current is False
    assert not state.lock.write_held
