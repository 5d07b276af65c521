from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest

import vpi_errors
import vpi_metadata
import vpi_provenance

HASH = "sha512:" + "0f" * 64


def test_install_statement_shape() -> None:
    statement = vpi_provenance.create_install_statement(
        "My.Package", "1.2.0", HASH, entry_count=3, source="/tmp/my.package.1.2.0.nupkg"
    )

    assert statement["_type"] == vpi_provenance.INTOTO_STATEMENT_TYPE
    assert statement["predicateType"] == vpi_provenance.PREDICATE_TYPE
    assert statement["subject"] == [{"name": "my.package@1.2.0", "digest": {"sha512": "0f" * 64}}]

    predicate = statement["predicate"]
    assert predicate["package"] == {"id": "My.Package", "version": "1.2.0"}
    assert predicate["archive"]["contentHash"] == HASH
    assert predicate["archive"]["entryCount"] == 3
    assert predicate["archive"]["source"] == "/tmp/my.package.1.2.0.nupkg"
    assert predicate["metadata"]["generatorTool"] == "vpi"


def test_source_omitted_when_unknown() -> None:
    statement = vpi_provenance.create_install_statement("pkg", "1.0.0", HASH, entry_count=0)
    assert "source" not in statement["predicate"]["archive"]


def test_unsigned_envelope_payload_roundtrip() -> None:
    statement = vpi_provenance.create_install_statement("pkg", "1.0.0", HASH, entry_count=1)
    envelope = vpi_provenance.create_dsse_envelope(statement)

    assert envelope["payloadType"] == vpi_provenance.DSSE_PAYLOAD_TYPE
    assert envelope["signatures"] == []
    assert json.loads(base64.b64decode(envelope["payload"])) == statement


def test_write_provenance(tmp_path: Path) -> None:
    statement = vpi_provenance.create_install_statement("pkg", "1.0.0", HASH, entry_count=1)
    target = vpi_provenance.write_provenance(tmp_path, statement)

    assert target == tmp_path / vpi_metadata.PROVENANCE_NAME
    assert json.loads(target.read_text(encoding="utf-8")) == statement


def test_dsse_pae_format() -> None:
    assert vpi_provenance.dsse_pae("text/plain", b"hi") == b"DSSEv1 10 text/plain 2 hi"
    assert vpi_provenance.dsse_pae("t", "é".encode("utf-8")) == b"DSSEv1 1 t 2 \xc3\xa9"


def _write_key(path: Path, private_key, passphrase: bytes = b"") -> None:
    from cryptography.hazmat.primitives import serialization

    encryption = (
        serialization.BestAvailableEncryption(passphrase)
        if passphrase
        else serialization.NoEncryption()
    )
    path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )
    )


def test_sign_statement_verifies_with_public_key(tmp_path: Path) -> None:
    pytest.importorskip("cryptography")
    from cryptography.hazmat.primitives.asymmetric import ed25519

    private_key = ed25519.Ed25519PrivateKey.generate()
    key_path = tmp_path / "key.pem"
    _write_key(key_path, private_key)

    statement = vpi_provenance.create_install_statement("Test", "2.4.2", HASH, entry_count=5)
    envelope = vpi_provenance.sign_statement(statement, key_path, key_id="ci-key")

    assert envelope["payloadType"] == vpi_provenance.DSSE_PAYLOAD_TYPE
    assert envelope["signatures"][0]["keyid"] == "ci-key"
    payload = base64.b64decode(envelope["payload"])
    signature = base64.b64decode(envelope["signatures"][0]["sig"])
    # Raises InvalidSignature on mismatch
    private_key.public_key().verify(
        signature, vpi_provenance.dsse_pae(envelope["payloadType"], payload)
    )
    assert json.loads(payload) == statement


def test_sign_statement_with_encrypted_ec_key(tmp_path: Path) -> None:
    pytest.importorskip("cryptography")
    from cryptography.hazmat.primitives import hashes
    from cryptography.hazmat.primitives.asymmetric import ec

    private_key = ec.generate_private_key(ec.SECP256R1())
    key_path = tmp_path / "ec.pem"
    _write_key(key_path, private_key, passphrase=b"s3cret")

    statement = vpi_provenance.create_install_statement("pkg", "1.0.0", HASH, entry_count=1)
    envelope = vpi_provenance.sign_statement(
        statement, key_path, signature_algorithm="ecdsa-sha256", passphrase="s3cret"
    )

    payload = base64.b64decode(envelope["payload"])
    private_key.public_key().verify(
        base64.b64decode(envelope["signatures"][0]["sig"]),
        vpi_provenance.dsse_pae(vpi_provenance.DSSE_PAYLOAD_TYPE, payload),
        ec.ECDSA(hashes.SHA256()),
    )
    assert "keyid" not in envelope["signatures"][0]


def test_sign_statement_rejects_mismatched_algorithm(tmp_path: Path) -> None:
    pytest.importorskip("cryptography")
    from cryptography.hazmat.primitives.asymmetric import ed25519

    key_path = tmp_path / "key.pem"
    _write_key(key_path, ed25519.Ed25519PrivateKey.generate())
    statement = vpi_provenance.create_install_statement("pkg", "1.0.0", HASH, entry_count=1)

    with pytest.raises(vpi_errors.ConfigurationError, match="is ed25519, not rsa-pss-sha256"):
        vpi_provenance.sign_statement(statement, key_path, signature_algorithm="rsa-pss-sha256")


def test_sign_statement_wrong_passphrase_is_configuration_error(tmp_path: Path) -> None:
    pytest.importorskip("cryptography")
    from cryptography.hazmat.primitives.asymmetric import ed25519

    key_path = tmp_path / "key.pem"
    _write_key(key_path, ed25519.Ed25519PrivateKey.generate(), passphrase=b"right")
    statement = vpi_provenance.create_install_statement("pkg", "1.0.0", HASH, entry_count=1)

    with pytest.raises(vpi_errors.ConfigurationError, match="Cannot load private key"):
        vpi_provenance.sign_statement(statement, key_path, passphrase="wrong")


def test_sign_statement_rejects_unknown_algorithm(tmp_path: Path) -> None:
    statement = vpi_provenance.create_install_statement("pkg", "1.0.0", HASH, entry_count=1)
    with pytest.raises(vpi_errors.ConfigurationError, match="Unsupported signature algorithm"):
        vpi_provenance.sign_statement(statement, tmp_path / "key.pem", signature_algorithm="nope")


def test_sign_statement_missing_key_is_io_error(tmp_path: Path) -> None:
    pytest.importorskip("cryptography")
    statement = vpi_provenance.create_install_statement("pkg", "1.0.0", HASH, entry_count=1)
    missing = tmp_path / "missing.pem"

    with pytest.raises(vpi_errors.InstallIOError) as exc_info:
        vpi_provenance.sign_statement(statement, missing)
    assert exc_info.value.path == missing
