"""Tests for the local object store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from media_jobs.core.storage import LocalObjectStore
from media_jobs.errors import StorageError

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(tmp_path / "objects", "http://testserver/api/artifacts/", signing_key="secret")


def link_params(url):
    query = parse_qs(urlsplit(url).query)
    return int(query["expires"][0]), query["signature"][0]


def test_put_bytes_and_file(tmp_path, store):
    source = tmp_path / "render.mp4"
    source.write_bytes(b"rendered")

    store.put("exports/job1/video.mp4", source)
    store.put("exports/job2/video.mp4", b"raw")

    assert store.path("exports/job1/video.mp4").read_bytes() == b"rendered"
    assert store.path("exports/job2/video.mp4").read_bytes() == b"raw"
    assert store.exists("exports/job1/video.mp4")
    assert not store.exists("exports/job3/video.mp4")


def test_put_replaces_existing(store):
    store.put("a/b.mp4", b"first")
    store.put("a/b.mp4", b"second")

    assert store.path("a/b.mp4").read_bytes() == b"second"
    # No temporary files left behind
    assert [p.name for p in store.path("a/b.mp4").parent.iterdir()] == ["b.mp4"]


@pytest.mark.parametrize("key", ["", "../etc/passwd", "a/../b", "/abs", "a//b", ".hidden", "a/..x"])
def test_invalid_keys_are_rejected(store, key):
    with pytest.raises(ValueError):
        store.path(key)


def test_delete(store):
    store.put("a/b.mp4", b"x")

    assert store.delete("a/b.mp4") is True
    assert store.delete("a/b.mp4") is False


def test_signed_url_round_trip(store):
    store.put("exports/job1/video.mp4", b"x")

    url, expires_at = store.signed_url("exports/job1/video.mp4", 3600, now=NOW)

    assert url.startswith("http://testserver/api/artifacts/exports/job1/video.mp4?expires=")
    assert expires_at == NOW + timedelta(seconds=3600)
    expires, signature = link_params(url)
    assert expires == int(expires_at.timestamp())
    assert store.verify("exports/job1/video.mp4", expires, signature, now=NOW)


def test_expired_link_is_rejected(store):
    store.put("a/b.mp4", b"x")
    url, _ = store.signed_url("a/b.mp4", 60, now=NOW)
    expires, signature = link_params(url)

    assert store.verify("a/b.mp4", expires, signature, now=NOW + timedelta(seconds=59))
    assert not store.verify("a/b.mp4", expires, signature, now=NOW + timedelta(seconds=60))


def test_tampered_link_is_rejected(store):
    store.put("a/b.mp4", b"x")
    store.put("a/c.mp4", b"y")
    url, _ = store.signed_url("a/b.mp4", 60, now=NOW)
    expires, signature = link_params(url)

    assert not store.verify("a/c.mp4", expires, signature, now=NOW)
    assert not store.verify("a/b.mp4", expires + 3600, signature, now=NOW)
    assert not store.verify("a/b.mp4", expires, "0" * 64, now=NOW)


def test_links_signed_with_another_key_are_rejected(tmp_path, store):
    store.put("a/b.mp4", b"x")
    other = LocalObjectStore(store.root, "http://testserver/api/artifacts", signing_key="other")
    url, _ = other.signed_url("a/b.mp4", 60, now=NOW)
    expires, signature = link_params(url)

    assert not store.verify("a/b.mp4", expires, signature, now=NOW)


def test_signed_url_default_and_bounds(store):
    store.put("a/b.mp4", b"x")

    _, expires_at = store.signed_url("a/b.mp4", now=NOW)
    assert expires_at == NOW + timedelta(seconds=store.default_ttl)

    with pytest.raises(ValueError):
        store.signed_url("a/b.mp4", store.max_ttl + 1, now=NOW)
    with pytest.raises(ValueError):
        store.signed_url("a/b.mp4", -5, now=NOW)


def test_signed_url_requires_object(store):
    with pytest.raises(StorageError):
        store.signed_url("exports/missing/video.mp4")


def test_missing_signing_key_warns(tmp_path, caplog):
    LocalObjectStore(tmp_path, "http://testserver")

    assert "No signing key configured" in caplog.text
