import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from stasis.build import (
    BuildError,
    BuildResult,
    _format_error_message,
    build_site,
    load_config,
    load_data,
)
from stasis.deps import CircularDependencyError
from stasis.lock import LOCK_FILENAME
from stasis.manifest import MANIFEST_FILENAME, load_cache_manifest
from stasis.validation import ISGConfigurationError, ISGValidationError

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def create_project(tmp_path: Path, config: str = "") -> Path:
    project = tmp_path / "project"
    site = project / "site"
    (site / "posts").mkdir(parents=True)
    (site / "_partials").mkdir()
    (project / "data").mkdir()
    (project / "stasis.yaml").write_text(
        config or "root_url: https://example.com\nisg:\n  ttl_seconds: 3600\n",
        encoding="utf-8",
    )
    (project / "data" / "site.yaml").write_text("title: Test\n", encoding="utf-8")
    (project / "data" / "nav.yaml").write_text("links: [a, b]\n", encoding="utf-8")
    (site / "_partials" / "footer.jinja").write_text("<footer/>", encoding="utf-8")
    (site / "layout.jinja").write_text(
        "<title>{{ data.title }}</title>{{ page_content }}"
        "<a href=\"{{ url_for('about/') }}\">about</a>{% include 'footer.jinja' %}",
        encoding="utf-8",
    )
    (site / "index.md").write_text("# Home\n\nWelcome.", encoding="utf-8")
    (site / "about.md").write_text("# About", encoding="utf-8")
    (site / "posts" / "2024-05-01-hello.md").write_text(
        "---\ntags: [blog]\n---\n# Hello\n\nFirst post.", encoding="utf-8"
    )
    (site / "posts" / "_draft.md").write_text("# Draft", encoding="utf-8")
    return project


def rendered_urls(result: BuildResult) -> list[str]:
    return sorted(page.url for page in result.rendered)


def test_build_site_creates_output_and_manifest(tmp_path):
    project = create_project(tmp_path)
    result = build_site(project, now=NOW)

    assert isinstance(result, BuildResult)
    assert result.cache_misses == 3
    assert result.cache_hits == 0
    html = (result.output_dir / "index.html").read_text(encoding="utf-8")
    assert "<title>Test</title>" in html
    assert 'href="https://example.com/about/"' in html
    assert "<footer/>" in html
    assert (result.output_dir / "posts" / "hello" / "index.html").exists()
    assert not (result.output_dir / "posts" / "draft" / "index.html").exists()

    manifest = load_cache_manifest(project / ".stasis")
    assert sorted(manifest.entries) == [
        "/about/index.html",
        "/index.html",
        "/posts/hello/index.html",
    ]
    post = manifest.entries["/posts/hello/index.html"]
    assert post.tags == ["page", "blog"]
    assert post.published_at == "2024-05-01T00:00:00.000Z"
    assert post.rendered_at == "2024-06-01T12:00:00.000Z"
    assert post.ttl_seconds == 3600
    assert post.deps == [
        str(project / "site" / "layout.jinja"),
        str(project / "site" / "_partials" / "footer.jinja"),
    ]
    assert not (project / ".stasis" / LOCK_FILENAME).exists()


def test_second_build_uses_cache(tmp_path):
    project = create_project(tmp_path)
    build_site(project, now=NOW)
    manifest_path = project / ".stasis" / MANIFEST_FILENAME
    before = json.loads(manifest_path.read_text(encoding="utf-8"))

    result = build_site(project, now=NOW + timedelta(minutes=10))
    assert result.cache_hits == 3
    assert result.cache_misses == 0
    assert json.loads(manifest_path.read_text(encoding="utf-8")) == before


def test_changes_rebuild_only_affected_pages(tmp_path):
    project = create_project(tmp_path)
    build_site(project, now=NOW)

    (project / "site" / "about.md").write_text("# About us", encoding="utf-8")
    result = build_site(project, now=NOW + timedelta(minutes=1))
    assert rendered_urls(result) == ["/about/"]

    (project / "site" / "_partials" / "footer.jinja").write_text("<footer>2</footer>")
    result = build_site(project, now=NOW + timedelta(minutes=2))
    assert result.cache_misses == 3
    html = (result.output_dir / "about" / "index.html").read_text(encoding="utf-8")
    assert "<footer>2</footer>" in html


def test_ttl_expiry_rebuilds(tmp_path):
    project = create_project(tmp_path)
    build_site(project, now=NOW)
    result = build_site(project, now=NOW + timedelta(hours=2))
    assert result.cache_misses == 3


def test_force_and_clean_rebuild_everything(tmp_path):
    project = create_project(tmp_path)
    build_site(project, now=NOW)
    (project / "output" / "stale.txt").write_text("old", encoding="utf-8")

    assert build_site(project, force=True, now=NOW).cache_misses == 3
    assert (project / "output" / "stale.txt").exists()

    assert build_site(project, clean=True, now=NOW).cache_misses == 3
    assert not (project / "output" / "stale.txt").exists()


def test_missing_output_is_rerendered(tmp_path):
    project = create_project(tmp_path)
    build_site(project, now=NOW)
    (project / "output" / "about" / "index.html").unlink()
    result = build_site(project, now=NOW)
    assert rendered_urls(result) == ["/about/"]


def test_manifest_keeps_entries_of_removed_pages(tmp_path):
    project = create_project(tmp_path)
    build_site(project, now=NOW)
    (project / "site" / "about.md").unlink()
    build_site(project, now=NOW)
    manifest = load_cache_manifest(project / ".stasis")
    assert "/about/index.html" in manifest.entries


def test_corrupt_manifest_triggers_full_rebuild(tmp_path):
    project = create_project(tmp_path)
    build_site(project, now=NOW)
    (project / ".stasis" / MANIFEST_FILENAME).write_text("{oops", encoding="utf-8")
    result = build_site(project, now=NOW)
    assert result.cache_misses == 3
    assert len(load_cache_manifest(project / ".stasis").entries) == 3


def test_isg_disabled_renders_all_without_manifest(tmp_path):
    project = create_project(tmp_path, "isg:\n  enabled: false\n")
    result = build_site(project, now=NOW)
    assert result.cache_misses == 3
    assert not (project / ".stasis").exists()
    assert build_site(project, now=NOW).cache_misses == 3


def test_invalid_isg_config_fails_before_any_work(tmp_path):
    project = create_project(
        tmp_path,
        "isg:\n  aging:\n    - {until_days: 30, ttl_seconds: 60}\n"
        "    - {until_days: 7, ttl_seconds: 60}\n",
    )
    with pytest.raises(ISGConfigurationError) as exc_info:
        build_site(project, now=NOW)
    assert exc_info.value.code is ISGValidationError.UNSORTED_AGING_RULES
    assert not (project / "output").exists()
    assert not (project / ".stasis").exists()


def test_circular_templates_abort_without_saving(tmp_path):
    project = create_project(tmp_path)
    (project / "site" / "layout.jinja").write_text(
        "{% if false %}{% include 'loop.jinja' %}{% endif %}{{ page_content }}",
        encoding="utf-8",
    )
    (project / "site" / "_partials" / "loop.jinja").write_text(
        "{% include 'layout.jinja' %}", encoding="utf-8"
    )
    with pytest.raises(CircularDependencyError):
        build_site(project, now=NOW)
    assert not (project / ".stasis" / MANIFEST_FILENAME).exists()
    assert not (project / ".stasis" / LOCK_FILENAME).exists()


def test_custom_directories(tmp_path):
    project = create_project(
        tmp_path, "src_dir: site\noutput_dir: public\ncache_dir: .cache/isg\n"
    )
    result = build_site(project, include_drafts=True, now=NOW)
    assert result.output_dir == project / "public"
    assert (project / "public" / "posts" / "draft" / "index.html").exists()
    assert (project / ".cache" / "isg" / MANIFEST_FILENAME).exists()


def test_missing_site_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_site(tmp_path, now=NOW)


def test_load_config_and_data(tmp_path):
    project = create_project(tmp_path)
    config = load_config(project)
    assert config["output_dir"] == "output"
    assert config["cache_dir"] == ".stasis"
    assert config["isg"] == {"ttl_seconds": 3600}
    data = load_data(project)
    assert data["title"] == "Test"
    assert data["nav"] == {"links": ["a", "b"]}
    assert load_data(tmp_path) == {}


def test_build_error_exception():
    err = BuildError(Path("site/x.md"), "bad", ValueError("v"))
    assert err.message == "bad"
    assert isinstance(err.original_error, ValueError)
    assert "site/x.md" in str(err)


def test_format_error_message():
    from jinja2 import UndefinedError

    assert _format_error_message(UndefinedError("'x' is undefined")).startswith(
        "Undefined variable"
    )
    assert _format_error_message(TypeError("t")) == "Type error: t"
    assert _format_error_message(RuntimeError("something else")) == "RuntimeError: something else"


def test_build_site_template_errors(tmp_path):
    project = create_project(tmp_path)
    (project / "site" / "layout.jinja").write_text(
        "{{ current_page.missing.attr }}", encoding="utf-8"
    )
    with pytest.raises(BuildError) as exc_info:
        build_site(project, now=NOW)
    assert exc_info.value.original_error is not None

    (project / "site" / "layout.jinja").write_text(
        "{% for x in items %}\nNo end!", encoding="utf-8"
    )
    with pytest.raises(BuildError) as exc_info:
        build_site(project, now=NOW)
    assert "syntax error" in exc_info.value.message.lower()
    assert exc_info.value.source_path.name in {"about.md", "index.md", "2024-05-01-hello.md"}
