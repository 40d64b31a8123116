"""Unit tests for the CLI — Typer command registration and basic behavior.

Exercises the commands through typer.testing.CliRunner; nothing here
reaches the network.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from componentforge.cli.app import app
from componentforge.core.hasher import compute_fingerprint
from componentforge.decrypt.formats import Format
from componentforge.decrypt.keyservice import AgeKey, LocalKeyService
from componentforge.decrypt.sops import encrypt_document

runner = CliRunner()


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("render", "resolve", "decrypt", "fingerprint"):
            assert command in result.output

    def test_each_command_has_help(self):
        for command in ("render", "resolve", "decrypt", "fingerprint"):
            assert runner.invoke(app, [command, "--help"]).exit_code == 0


# ---------------------------------------------------------------------------
# Test: fingerprint
# ---------------------------------------------------------------------------


class TestFingerprint:
    def test_without_keys(self):
        result = runner.invoke(app, ["fingerprint", "sha256:abc", "--path", "charts/app"])
        assert result.exit_code == 0
        assert result.output.strip() == compute_fingerprint("sha256:abc", "charts/app")

    def test_with_keys(self, tmp_path: Path):
        (tmp_path / "k.agekey").write_bytes(b"AGE-SECRET-KEY-1")
        result = runner.invoke(
            app, ["fingerprint", "d", "--provider", "sops", "--keys", str(tmp_path)]
        )
        assert result.output.strip() == compute_fingerprint(
            "d", "", "sops", {"k.agekey": b"AGE-SECRET-KEY-1"}
        )


# ---------------------------------------------------------------------------
# Test: decrypt
# ---------------------------------------------------------------------------


class TestDecrypt:
    def _setup(self, tmp_path: Path, age_recipient, age_key_bundle) -> tuple[Path, Path]:
        keys = tmp_path / "keys"
        keys.mkdir()
        for name, data in age_key_bundle.items():
            (keys / name).write_bytes(data)
        document = tmp_path / "secret.yaml"
        document.write_bytes(
            encrypt_document({"password": "hunter2"}, Format.YAML, [AgeKey(age_recipient)], LocalKeyService())
        )
        return document, keys

    def test_to_file(self, tmp_path: Path, age_recipient, age_key_bundle):
        document, keys = self._setup(tmp_path, age_recipient, age_key_bundle)
        out = tmp_path / "plain.yaml"
        result = runner.invoke(app, ["decrypt", str(document), "--keys", str(keys), "-o", str(out)])
        assert result.exit_code == 0
        assert yaml.safe_load(out.read_text()) == {"password": "hunter2"}

    def test_to_stdout(self, tmp_path: Path, age_recipient, age_key_bundle):
        document, keys = self._setup(tmp_path, age_recipient, age_key_bundle)
        result = runner.invoke(app, ["decrypt", str(document), "--keys", str(keys)])
        assert result.exit_code == 0
        assert "password: hunter2" in result.stdout

    def test_unsupported_provider(self, tmp_path: Path, age_recipient, age_key_bundle):
        document, keys = self._setup(tmp_path, age_recipient, age_key_bundle)
        result = runner.invoke(app, ["decrypt", str(document), "--keys", str(keys), "--provider", "vault"])
        assert result.exit_code == 1

    def test_keys_must_be_a_directory(self, tmp_path: Path):
        document = tmp_path / "x.yaml"
        document.write_text("a: 1\n")
        result = runner.invoke(app, ["decrypt", str(document), "--keys", str(document)])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Test: render
# ---------------------------------------------------------------------------


COMPONENT = {
    "apiVersion": "core.cs.sap.com/v1alpha1",
    "kind": "Component",
    "metadata": {"name": "app"},
    "spec": {"sourceRef": {"fluxGitRepository": {"name": "repo"}}},
}


class TestRender:
    def test_requires_one_component(self, tmp_path: Path):
        manifest = tmp_path / "component.yaml"
        manifest.write_text(yaml.safe_dump({"kind": "ConfigMap", "metadata": {"name": "x"}}))
        result = runner.invoke(app, ["render", str(manifest)])
        assert result.exit_code == 1

    def test_missing_source_is_retriable(self, tmp_path: Path):
        manifest = tmp_path / "component.yaml"
        manifest.write_text(yaml.safe_dump(COMPONENT))
        result = runner.invoke(app, ["render", str(manifest), "-n", "team"])
        assert result.exit_code == 2

    def test_unreadable_store(self, tmp_path: Path):
        manifest = tmp_path / "component.yaml"
        manifest.write_text(yaml.safe_dump(COMPONENT))
        result = runner.invoke(app, ["render", str(manifest), "--store", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1
