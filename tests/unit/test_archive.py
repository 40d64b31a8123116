"""Tests for the artifact fetcher — download, extraction, in-stream decryption."""

from __future__ import annotations

import io
from pathlib import Path

import httpx
import pytest

from componentforge.core.archive import ArtifactFetcher, clean_entry_path, extract_archive
from componentforge.core.errors import ArchiveError

URL = "https://repo.example.com/app.tgz"


class RecordingDecryptor:
    """Uppercases files ending in .enc and records every call."""

    def __init__(self):
        self.calls: list[str] = []

    def decrypt(self, data: bytes, path: str) -> bytes:
        self.calls.append(path)
        return data.upper() if path.endswith(".enc") else data

    def cleanup(self) -> None:
        pass


class TestCleanEntryPath:
    def test_normalizes(self):
        assert clean_entry_path("a/./b//c") == "a/b/c"

    def test_absolute_rejected(self):
        with pytest.raises(ArchiveError, match="absolute"):
            clean_entry_path("/etc/passwd")

    @pytest.mark.parametrize("name", ["..", "../x", "a/../../x", "a/x/../b", "a/.."])
    def test_dotdot_segment_rejected(self, name):
        with pytest.raises(ArchiveError):
            clean_entry_path(name)


class TestExtractArchive:
    def test_extracts_files_and_directories(self, tmp_path: Path, make_tarball):
        data = make_tarball(
            {"chart/Chart.yaml": b"name: app\n", "chart/templates/cm.yaml": b"kind: ConfigMap\n"},
            directories=("chart", "chart/empty"),
        )
        root = extract_archive(io.BytesIO(data), tmp_path)
        assert root == tmp_path
        assert (tmp_path / "chart/Chart.yaml").read_bytes() == b"name: app\n"
        assert (tmp_path / "chart/templates/cm.yaml").exists()
        assert (tmp_path / "chart/empty").is_dir()

    def test_dot_entry_skipped(self, tmp_path: Path, make_tarball):
        data = make_tarball({"./a.yaml": b"a"}, directories=(".",))
        extract_archive(io.BytesIO(data), tmp_path)
        assert (tmp_path / "a.yaml").read_bytes() == b"a"

    def test_sub_path_restricts_materialization(self, tmp_path: Path, make_tarball):
        data = make_tarball({"charts/app/Chart.yaml": b"x", "charts/other/Chart.yaml": b"y", "README": b"z"})
        root = extract_archive(io.BytesIO(data), tmp_path, sub_path="charts/app")
        assert root == tmp_path / "charts/app"
        assert (root / "Chart.yaml").exists()
        assert not (tmp_path / "charts/other").exists()
        assert not (tmp_path / "README").exists()

    def test_sub_path_is_not_a_prefix_match(self, tmp_path: Path, make_tarball):
        data = make_tarball({"app/a": b"1", "application/b": b"2"})
        extract_archive(io.BytesIO(data), tmp_path, sub_path="app")
        assert (tmp_path / "app/a").exists()
        assert not (tmp_path / "application").exists()

    def test_decryptor_called_once_per_retained_file(self, tmp_path: Path, make_tarball):
        data = make_tarball({"app/secret.enc": b"hidden", "app/plain.yaml": b"plain", "other/x.enc": b"x"})
        decryptor = RecordingDecryptor()
        extract_archive(io.BytesIO(data), tmp_path, sub_path="app", decryptor=decryptor)
        assert sorted(decryptor.calls) == ["app/plain.yaml", "app/secret.enc"]
        assert (tmp_path / "app/secret.enc").read_bytes() == b"HIDDEN"
        assert (tmp_path / "app/plain.yaml").read_bytes() == b"plain"

    def test_symlink_rejected(self, tmp_path: Path, make_tarball):
        data = make_tarball({}, symlinks={"link": "target"})
        with pytest.raises(ArchiveError, match="unsupported tar entry type"):
            extract_archive(io.BytesIO(data), tmp_path)

    def test_not_gzip(self, tmp_path: Path):
        with pytest.raises(ArchiveError):
            extract_archive(io.BytesIO(b"definitely not a tarball"), tmp_path)


class TestArtifactFetcher:
    def test_fetch(self, tmp_path: Path, mock_client, make_tarball):
        data = make_tarball({"k/kustomization.yaml": b"resources: []\n"})
        client = mock_client(lambda request: httpx.Response(200, content=data))
        root = ArtifactFetcher(client).fetch(URL, tmp_path, sub_path="k")
        assert (root / "kustomization.yaml").read_bytes() == b"resources: []\n"

    def test_non_200_is_fatal(self, tmp_path: Path, mock_client):
        client = mock_client(lambda request: httpx.Response(404))
        with pytest.raises(ArchiveError, match="404"):
            ArtifactFetcher(client).fetch(URL, tmp_path)

    def test_transport_error_is_fatal(self, tmp_path: Path, mock_client):
        def respond(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ArchiveError):
            ArtifactFetcher(mock_client(respond)).fetch(URL, tmp_path)
