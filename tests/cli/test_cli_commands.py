"""Tests for the dockramp command line."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from ramp_cli.cache import BuildCache, cache_key
from ramp_cli.cli import app
from ramp_tarsum import Digest

runner = CliRunner()

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


@pytest.fixture(autouse=True)
def isolated_cache(tmp_path, monkeypatch):
    path = tmp_path / "cache.json"
    monkeypatch.setenv("DOCKRAMP_CACHE", str(path))
    return path


@pytest.fixture()
def tar_file(tmp_path, sample_tar):
    path = tmp_path / "sample.tar"
    path.write_bytes(sample_tar)
    return path


def expected_sum(data: bytes, version: str = "1") -> str:
    digest = Digest(version)
    digest.write(data)
    return digest.sum_string()


class TestDigestCommand:
    def test_tar_file(self, tmp_path, tar_file, sample_tar):
        result = runner.invoke(app, ["-C", str(tmp_path), "digest", str(tar_file)])
        assert result.exit_code == 0, result.output
        assert expected_sum(sample_tar) in result.stdout

    def test_json_output(self, tmp_path, tar_file, sample_tar):
        result = runner.invoke(
            app, ["-C", str(tmp_path), "digest", str(tar_file), "--version", "0", "--json"]
        )
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["label"] == "tarsum+sha256"
        assert payload["finished"] is True
        assert payload["entries"] == 3
        assert payload["bytes_consumed"] == len(sample_tar)
        assert payload["sum"] == expected_sum(sample_tar, "0")

    def test_extra_seed(self, tmp_path):
        empty = tmp_path / "empty.tar"
        empty.write_bytes(bytes(1024))
        result = runner.invoke(
            app, ["-C", str(tmp_path), "digest", str(empty), "--extra", "seed", "--json"]
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["digest"] != EMPTY_SHA256

    def test_directory_source(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "a.txt").write_text("a\n")
        result = runner.invoke(app, ["-C", str(tmp_path), "digest", str(src), "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["entries"] == 2
        assert payload["sum"].startswith("tarsum.v1+sha256:")

    def test_checkpoint_and_resume(self, tmp_path, tar_file, sample_tar):
        checkpoint = tmp_path / "state.json"
        first = runner.invoke(
            app,
            [
                "-C", str(tmp_path), "digest", str(tar_file),
                "--stop-after", "1700", "--checkpoint", str(checkpoint), "--json",
            ],
        )
        assert first.exit_code == 0, first.output
        partial = json.loads(first.stdout)
        assert partial["finished"] is False
        assert partial["bytes_consumed"] == 1700
        assert "sum" not in partial
        assert checkpoint.exists()

        second = runner.invoke(
            app,
            ["-C", str(tmp_path), "digest", str(tar_file), "--resume", str(checkpoint), "--json"],
        )
        assert second.exit_code == 0, second.output
        assert json.loads(second.stdout)["sum"] == expected_sum(sample_tar)

    def test_version_from_config(self, tmp_path, tar_file, sample_tar):
        (tmp_path / ".dockramp").mkdir()
        (tmp_path / ".dockramp" / "config.yaml").write_text("tarsum:\n  version: 0\n")
        result = runner.invoke(app, ["-C", str(tmp_path), "digest", str(tar_file), "--json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["sum"] == expected_sum(sample_tar, "0")

    def test_unsupported_version(self, tmp_path, tar_file):
        result = runner.invoke(app, ["-C", str(tmp_path), "digest", str(tar_file), "-v", "9"])
        assert result.exit_code == 1

    def test_missing_path(self, tmp_path):
        result = runner.invoke(app, ["-C", str(tmp_path), "digest", str(tmp_path / "nope.tar")])
        assert result.exit_code == 1

    def test_malformed_tar(self, tmp_path):
        bad = tmp_path / "bad.tar"
        bad.write_bytes(b"garbage!" * 256)
        result = runner.invoke(app, ["-C", str(tmp_path), "digest", str(bad)])
        assert result.exit_code == 1

    def test_resume_requires_tar(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        result = runner.invoke(
            app, ["-C", str(tmp_path), "digest", str(src), "--stop-after", "10"]
        )
        assert result.exit_code == 1

    def test_invalid_config(self, tmp_path, tar_file):
        (tmp_path / ".dockramp").mkdir()
        (tmp_path / ".dockramp" / "config.yaml").write_text("tarsum:\n  chunk_size: -1\n")
        result = runner.invoke(app, ["-C", str(tmp_path), "digest", str(tar_file)])
        assert result.exit_code == 1


class TestCacheCommands:
    def test_key(self, tmp_path):
        result = runner.invoke(
            app, ["-C", str(tmp_path), "cache", "key", "sha256:base", "RUN make", "COPY digest: ab"]
        )
        assert result.exit_code == 0, result.output
        assert result.stdout.strip() == cache_key("sha256:base", ["RUN make", "COPY digest: ab"])

    def test_show_json(self, tmp_path, isolated_cache):
        BuildCache(isolated_cache).set("k1", "sha256:one")
        result = runner.invoke(app, ["-C", str(tmp_path), "cache", "show", "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["path"] == str(isolated_cache)
        assert payload["entries"] == {"k1": "sha256:one"}

    def test_show_empty(self, tmp_path):
        result = runner.invoke(app, ["-C", str(tmp_path), "cache", "show"])
        assert result.exit_code == 0, result.output
        assert "empty" in result.stdout

    def test_clear(self, tmp_path, isolated_cache):
        BuildCache(isolated_cache).set("k1", "sha256:one")
        result = runner.invoke(app, ["-C", str(tmp_path), "cache", "clear", "--yes"])
        assert result.exit_code == 0, result.output
        assert len(BuildCache(isolated_cache)) == 0

    def test_clear_declined(self, tmp_path, isolated_cache):
        BuildCache(isolated_cache).set("k1", "sha256:one")
        result = runner.invoke(app, ["-C", str(tmp_path), "cache", "clear"], input="n\n")
        assert result.exit_code == 1
        assert len(BuildCache(isolated_cache)) == 1

    def test_corrupt_cache_file(self, tmp_path, isolated_cache):
        isolated_cache.write_text("{broken")
        result = runner.invoke(app, ["-C", str(tmp_path), "cache", "show"])
        assert result.exit_code == 1
