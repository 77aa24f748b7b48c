import errno
import json

import pytest
from structlog.testing import capture_logs

from stasis.manifest import (
    MANIFEST_FILENAME,
    CacheEntry,
    CacheManifest,
    ManifestSaveError,
    create_empty_manifest,
    load_cache_manifest,
    save_cache_manifest,
)


def make_entry(path="/blog/post/index.html", **overrides) -> CacheEntry:
    values = {
        "path": path,
        "inputs_hash": "sha256-abc",
        "deps": ["/site/layout.jinja"],
        "tags": ["page", "blog"],
        "rendered_at": "2024-03-15T10:00:00.000Z",
        "ttl_seconds": 3600,
    }
    values.update(overrides)
    return CacheEntry(**values)


def test_missing_manifest_loads_as_none(tmp_path):
    assert load_cache_manifest(tmp_path) is None
    assert load_cache_manifest(tmp_path / "nope") is None


def test_save_and_load_round_trip(tmp_path):
    cache_dir = tmp_path / ".stasis"
    manifest = CacheManifest(
        entries={
            "/blog/post/index.html": make_entry(
                published_at="2024-03-01T00:00:00.000Z", max_age_cap_days=365
            ),
            "/about/index.html": make_entry("/about/index.html", tags=["page"]),
        }
    )
    save_cache_manifest(cache_dir, manifest)

    loaded = load_cache_manifest(cache_dir)
    assert loaded == manifest
    assert list(loaded.entries) == ["/blog/post/index.html", "/about/index.html"]


def test_saved_manifest_format(tmp_path):
    save_cache_manifest(tmp_path, CacheManifest({"/a/index.html": make_entry("/a/index.html")}))
    text = (tmp_path / MANIFEST_FILENAME).read_text(encoding="utf-8")
    assert text.startswith('{\n  "entries"')
    payload = json.loads(text)
    entry = payload["entries"]["/a/index.html"]
    assert entry["inputsHash"] == "sha256-abc"
    assert entry["renderedAt"] == "2024-03-15T10:00:00.000Z"
    assert entry["ttlSeconds"] == 3600
    assert "publishedAt" not in entry
    assert "maxAgeCapDays" not in entry


def test_empty_manifest_saves_empty_entries(tmp_path):
    save_cache_manifest(tmp_path, create_empty_manifest())
    payload = json.loads((tmp_path / MANIFEST_FILENAME).read_text(encoding="utf-8"))
    assert payload == {"entries": {}}


@pytest.mark.parametrize(
    "content, event",
    [
        ("", "manifest_empty"),
        ("   \n", "manifest_empty"),
        ("{not json", "manifest_invalid_json"),
        ("[]", "manifest_invalid_shape"),
        ('{"entries": []}', "manifest_invalid_shape"),
        ('{"other": {}}', "manifest_invalid_shape"),
    ],
)
def test_corrupt_manifest_loads_as_none(tmp_path, content, event):
    (tmp_path / MANIFEST_FILENAME).write_text(content, encoding="utf-8")
    with capture_logs() as logs:
        assert load_cache_manifest(tmp_path) is None
    assert [log["event"] for log in logs] == [event]
    assert logs[0]["log_level"] == "warning"


def test_invalid_entries_are_dropped(tmp_path):
    good = make_entry("/good/index.html").to_dict()
    bad_date = {**make_entry("/bad/index.html").to_dict(), "renderedAt": "yesterday"}
    missing_hash = make_entry("/nohash/index.html").to_dict()
    del missing_hash["inputsHash"]
    payload = {
        "entries": {
            "/good/index.html": good,
            "/bad/index.html": bad_date,
            "/nohash/index.html": missing_hash,
            "/junk/index.html": "junk",
            "/ttl/index.html": {**good, "path": "/ttl/index.html", "ttlSeconds": "60"},
        }
    }
    (tmp_path / MANIFEST_FILENAME).write_text(json.dumps(payload), encoding="utf-8")

    with capture_logs() as logs:
        manifest = load_cache_manifest(tmp_path)
    assert list(manifest.entries) == ["/good/index.html"]
    events = [log["event"] for log in logs]
    assert events.count("manifest_entry_invalid") == 4
    assert events[-1] == "manifest_entries_dropped"


def test_save_into_file_path_raises(tmp_path):
    blocker = tmp_path / "cache"
    blocker.write_text("not a dir", encoding="utf-8")
    with pytest.raises(ManifestSaveError) as exc_info:
        save_cache_manifest(blocker, create_empty_manifest())
    assert "not a directory" in exc_info.value.message
    assert exc_info.value.manifest_path == blocker / MANIFEST_FILENAME
    assert isinstance(exc_info.value.__cause__, OSError)


@pytest.mark.parametrize(
    "error, expected",
    [
        (PermissionError(errno.EACCES, "denied"), "Permission denied"),
        (OSError(errno.ENOSPC, "full"), "No space left"),
        (OSError(errno.EIO, "io"), "Failed to save cache manifest"),
    ],
)
def test_save_error_messages(monkeypatch, tmp_path, error, expected):
    def boom(self, *args, **kwargs):
        raise error

    monkeypatch.setattr("pathlib.Path.write_text", boom)
    with pytest.raises(ManifestSaveError) as exc_info:
        save_cache_manifest(tmp_path, create_empty_manifest())
    assert expected in exc_info.value.message
    assert exc_info.value.__cause__ is error


def test_failed_save_keeps_previous_manifest(monkeypatch, tmp_path):
    manifest = create_empty_manifest()
    manifest.entries["/a/index.html"] = make_entry("/a/index.html")
    save_cache_manifest(tmp_path, manifest)
    assert [p.name for p in tmp_path.iterdir()] == [MANIFEST_FILENAME]

    def boom(src, dst):
        raise OSError(errno.EIO, "io")

    monkeypatch.setattr("stasis.manifest.os.replace", boom)
    with pytest.raises(ManifestSaveError):
        save_cache_manifest(tmp_path, create_empty_manifest())

    assert [p.name for p in tmp_path.iterdir()] == [MANIFEST_FILENAME]
    assert list(load_cache_manifest(tmp_path).entries) == ["/a/index.html"]
