from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import pytest

import vpi
import vpi_install


def test_help_lists_commands(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        vpi.main(["--help"])
    assert exc_info.value.code == 0
    out = capsys.readouterr().out
    assert "usage: vpi" in out
    assert "Versioned Package Installer" in out
    for command in ("install", "verify", "digest", "pack"):
        assert command in out


def test_unknown_command(capsys) -> None:
    with pytest.raises(SystemExit) as exc_info:
        vpi.main(["explode"])
    assert exc_info.value.code == 2
    assert "invalid choice" in capsys.readouterr().err


def test_dispatch_passes_arguments_through(sample_archive: Path, capsys) -> None:
    assert vpi.main(["digest", str(sample_archive), "--algorithm", "sha512"]) == 0
    assert capsys.readouterr().out.startswith("sha512:")


def test_install_cli_success(sample_archive: Path, install_root: Path, capsys) -> None:
    code = vpi_install.main([str(sample_archive), str(install_root), "test", "2.4.2"])

    assert code == 0
    out = capsys.readouterr().out.strip()
    assert out.startswith("Installed test@2.4.2 into ")
    assert "(5 files, sha256:" in out

    assert vpi_install.main([str(sample_archive), str(install_root), "test", "2.4.2"]) == 0
    assert "is already installed" in capsys.readouterr().out


def test_install_cli_wrong_arity(capsys) -> None:
    assert vpi_install.main(["only", "three", "args"]) == 1
    assert capsys.readouterr().out.strip() == "Exactly 4 arguments required."


def test_install_cli_invalid_id(sample_archive: Path, install_root: Path, capsys) -> None:
    code = vpi_install.main([str(sample_archive), str(install_root), "bad id!", "1.0"])

    assert code == 1
    assert "should be a valid package id" in capsys.readouterr().out
    assert list(install_root.iterdir()) == []


def test_install_cli_traversal_is_runtime_error(make_zip, install_root: Path, capsys) -> None:
    archive = make_zip({"../escape.txt": b"x"}, name="evil.zip")
    assert vpi_install.main([str(archive), str(install_root), "evil", "1.0"]) == 2
    assert "escapes destination" in capsys.readouterr().out


def test_install_cli_flags_and_json(
    sample_archive: Path, install_root: Path, tmp_path: Path, capsys
) -> None:
    signature = tmp_path / "pkg.sig"
    signature.write_bytes(b"sig-bytes")

    code = vpi_install.main(
        [
            str(sample_archive),
            str(install_root),
            "test",
            "2.4.2",
            "--signature",
            str(signature),
            "--keep-archive",
            "--exclude",
            "build",
            "--json",
        ]
    )

    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["alreadyInstalled"] is False
    assert output["state"] == "Completed"
    assert output["entryCount"] == 3

    package_dir = Path(output["path"])
    assert (package_dir / ".vpi.signature").read_bytes() == b"sig-bytes"
    assert (package_dir / "test.2.4.2.nupkg").is_file()
    assert not (package_dir / "build").exists()


def test_install_cli_sign_requires_key(sample_archive: Path, install_root: Path, capsys) -> None:
    code = vpi_install.main([str(sample_archive), str(install_root), "test", "2.4.2", "--sign"])
    assert code == 1
    assert "--sign requires --private-key" in capsys.readouterr().out


def test_install_cli_reads_config_file(
    sample_archive: Path, install_root: Path, tmp_path: Path, capsys
) -> None:
    config = tmp_path / "vpi.yaml"
    config.write_text("hash_algorithm: sha512\nattest: true\n", encoding="utf-8")

    code = vpi_install.main(
        [str(sample_archive), str(install_root), "test", "2.4.2", "--config", str(config)]
    )

    assert code == 0
    assert "sha512:" in capsys.readouterr().out
    assert (install_root / "test" / "2.4.2" / ".vpi.provenance.json").is_file()


def test_cli_digest_subprocess(sample_archive: Path, repo_root: Path) -> None:
    result = subprocess.run(
        [sys.executable, str(repo_root / "vpi_digest.py"), str(sample_archive)],
        capture_output=True,
        text=True,
        check=False,
    )
    assert result.returncode == 0
    assert result.stdout.strip().startswith("sha256:")


def test_cli_pack_then_install_then_verify(
    tmp_path: Path, install_root: Path, repo_root: Path
) -> None:
    source = tmp_path / "src"
    (source / "lib").mkdir(parents=True)
    (source / "lib" / "a.dll").write_bytes(b"MZ")
    archive = tmp_path / "a.1.0.0.zip"

    def run(*args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [sys.executable, str(repo_root / "vpi.py"), *args],
            capture_output=True,
            text=True,
            check=False,
            cwd=repo_root,
        )

    assert run("pack", str(source), str(archive)).returncode == 0
    assert run("install", str(archive), str(install_root), "a", "1.0").returncode == 0

    verified = run("verify", str(install_root), "a", "1.0", "--archive", str(archive), "--json")
    assert verified.returncode == 0
    assert json.loads(verified.stdout)["passed"] is True


def test_install_cli_rejects_nested_exclude(
    sample_archive: Path, install_root: Path, capsys
) -> None:
    code = vpi_install.main(
        [str(sample_archive), str(install_root), "test", "2.4.2", "--exclude", "build/net452"]
    )

    assert code == 1
    assert "Invalid installer settings" in capsys.readouterr().out
    assert not (install_root / "test").exists()
