#!/usr/bin/env python3
"""Install provenance statements in in-toto Statement format.

The statement records which archive (by digest) was installed as which
package identity, and when. It can be wrapped in a DSSE envelope and signed
with a local private key before it is stored as .vpi.provenance.json.
Signing needs `cryptography` (the `signing` extra), imported on first use.
"""

from __future__ import annotations

import base64
import json
import pathlib
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from vpi_digest import parse_content_hash
from vpi_errors import ConfigurationError, InstallIOError
from vpi_fs import write_bytes_atomic
from vpi_metadata import PROVENANCE_NAME

# =============================================================================
# Constants
# =============================================================================

INTOTO_STATEMENT_TYPE = "https://in-toto.io/Statement/v1"
DSSE_PAYLOAD_TYPE = "application/vnd.in-toto+json"

SIGNATURE_ALGORITHMS = ("auto", "ed25519", "ecdsa-sha256", "rsa-pss-sha256")

PREDICATE_TYPE = "https://vpi.local/predicates/vpi-install-v1"

TOOL_NAME = "vpi"
TOOL_VERSION = "1.0.0"


# =============================================================================
# Statement generation
# =============================================================================


def create_install_statement(
    package_id: str,
    package_version: str,
    content_hash: str,
    entry_count: int,
    source: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a vpi-install-v1 statement for a completed extraction."""
    algorithm, hexdigest = parse_content_hash(content_hash)

    predicate: Dict[str, Any] = {
        "package": {
            "id": package_id,
            "version": package_version,
        },
        "archive": {
            "contentHash": content_hash,
            "entryCount": entry_count,
        },
        "metadata": {
            "installedAt": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "generatorTool": TOOL_NAME,
            "generatorVersion": TOOL_VERSION,
        },
    }
    if source:
        predicate["archive"]["source"] = source

    return {
        "_type": INTOTO_STATEMENT_TYPE,
        "subject": [
            {
                "name": f"{package_id.lower()}@{package_version}",
                "digest": {algorithm: hexdigest},
            }
        ],
        "predicateType": PREDICATE_TYPE,
        "predicate": predicate,
    }


def create_dsse_envelope(statement: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap a statement in an (unsigned) DSSE envelope."""
    payload_json = json.dumps(statement, separators=(",", ":"), sort_keys=True)
    payload_b64 = base64.b64encode(payload_json.encode("utf-8")).decode("ascii")
    return {
        "payloadType": DSSE_PAYLOAD_TYPE,
        "payload": payload_b64,
        "signatures": [],
    }


# =============================================================================
# Signing
# =============================================================================


def dsse_pae(payload_type: str, payload: bytes) -> bytes:
    """DSSE Pre-Authentication Encoding: the exact bytes that get signed."""
    type_bytes = payload_type.encode("utf-8")
    return b" ".join(
        [
            b"DSSEv1",
            str(len(type_bytes)).encode("ascii"),
            type_bytes,
            str(len(payload)).encode("ascii"),
            payload,
        ]
    )


def _load_signing_key(path: pathlib.Path, passphrase: Optional[str]) -> Any:
    try:
        from cryptography.hazmat.primitives.serialization import load_pem_private_key
    except ImportError as exc:  # pragma: no cover - depends on optional dependency
        raise ConfigurationError(
            "cryptography is required to sign provenance. "
            "Install with: pip install 'vpi[signing]'"
        ) from exc

    try:
        pem = pathlib.Path(path).read_bytes()
    except OSError as exc:
        raise InstallIOError(f"Cannot read private key ({exc.strerror or exc})", path) from exc

    password = passphrase.encode("utf-8") if passphrase else None
    try:
        return load_pem_private_key(pem, password=password)
    except (ValueError, TypeError) as exc:
        # Wrong or missing passphrase, or not a PEM private key
        raise ConfigurationError(f"Cannot load private key {path}: {exc}") from exc


def _signer_for(key: Any) -> Tuple[str, Callable[[bytes], bytes]]:
    """Pick the signature algorithm matching the key type."""
    from cryptography.hazmat.primitives import hashes
    from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

    if isinstance(key, ed25519.Ed25519PrivateKey):
        return "ed25519", key.sign
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return "ecdsa-sha256", lambda data: key.sign(data, ec.ECDSA(hashes.SHA256()))
    if isinstance(key, rsa.RSAPrivateKey):
        pss = padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)
        return "rsa-pss-sha256", lambda data: key.sign(data, pss, hashes.SHA256())
    raise ConfigurationError(f"Unsupported private key type: {type(key).__name__}")


def sign_statement(
    statement: Dict[str, Any],
    private_key_path: pathlib.Path,
    signature_algorithm: str = "auto",
    key_id: Optional[str] = None,
    passphrase: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Wrap statement in a DSSE envelope signed with a local PEM key.

    Args:
        statement: In-toto statement from create_install_statement
        private_key_path: PEM private key (ed25519, EC or RSA)
        signature_algorithm: "auto" or the algorithm the key must match
        key_id: Recorded as the signature's keyid
        passphrase: For an encrypted key

    Raises:
        ConfigurationError: Unknown algorithm, unusable key, or a key that
            does not match signature_algorithm
        InstallIOError: If the key file cannot be read
    """
    if signature_algorithm not in SIGNATURE_ALGORITHMS:
        raise ConfigurationError(f"Unsupported signature algorithm: {signature_algorithm}")

    key = _load_signing_key(private_key_path, passphrase)
    key_algorithm, sign = _signer_for(key)
    if signature_algorithm not in ("auto", key_algorithm):
        raise ConfigurationError(
            f"Private key {private_key_path} is {key_algorithm}, not {signature_algorithm}"
        )

    envelope = create_dsse_envelope(statement)
    payload = base64.b64decode(envelope["payload"])
    signature: Dict[str, str] = {
        "sig": base64.b64encode(sign(dsse_pae(DSSE_PAYLOAD_TYPE, payload))).decode("ascii")
    }
    if key_id:
        signature["keyid"] = key_id
    envelope["signatures"].append(signature)
    return envelope


def write_provenance(destination: pathlib.Path, document: Dict[str, Any]) -> pathlib.Path:
    target = pathlib.Path(destination) / PROVENANCE_NAME
    data = (json.dumps(document, indent=2, ensure_ascii=False) + "\n").encode("utf-8")
    write_bytes_atomic(target, data)
    return target
