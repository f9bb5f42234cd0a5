from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Mapping

from payrecon.domain.enums import SignatureMode

logger = logging.getLogger(__name__)


def _hex_hmac(secret: str, message: bytes, digestmod: Any) -> str:
    return hmac.new(secret.encode("utf-8"), message, digestmod).hexdigest()


def _tolerated(mode: SignatureMode, gateway: str, *, has_signature: bool) -> bool:
    """Missing material is accepted only outside of enforce mode."""
    reason = "missing secret" if has_signature else "missing signature"
    if mode == SignatureMode.BYPASS:
        logger.warning("signature check bypassed", extra={"gateway": gateway, "error": reason})
        return True
    logger.warning("signature material missing", extra={"gateway": gateway, "error": reason})
    return False


# JSON.stringify prints integral numbers below 1e21 without a fraction
JS_INTEGER_LIMIT = 1e21


def _js_numbers(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer() and abs(value) < JS_INTEGER_LIMIT:
        return int(value)
    if isinstance(value, dict):
        return {key: _js_numbers(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_js_numbers(item) for item in value]
    return value


def flutterwave_body(payload: Any) -> bytes:
    """Re-serialize a parsed payload the way the gateway signs it.

    Compact separators, insertion order kept, non-ASCII left unescaped and
    integral floats written as integers, as `JSON.stringify` does. Exponent
    notation for very large or very small floats still differs.
    """
    return json.dumps(_js_numbers(payload), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_flutterwave(
    payload: Any, signature: str | None, secret: str, mode: SignatureMode
) -> bool:
    """HMAC-SHA256 of the JSON payload compared with the `verif-hash` header."""
    if not signature or not secret:
        return _tolerated(mode, "FLUTTERWAVE", has_signature=bool(signature))
    expected = _hex_hmac(secret, flutterwave_body(payload), hashlib.sha256)
    return hmac.compare_digest(expected, signature.strip())


def verify_paystack(
    raw_body: bytes, signature: str | None, secret: str, mode: SignatureMode
) -> bool:
    """HMAC-SHA512 of the exact request bytes compared with `x-paystack-signature`."""
    if not signature or not secret:
        return _tolerated(mode, "PAYSTACK", has_signature=bool(signature))
    expected = _hex_hmac(secret, raw_body, hashlib.sha512)
    return hmac.compare_digest(expected, signature.strip())


def _quoted(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def opay_canonical_string(payload: Mapping[str, Any]) -> str:
    """Build the field-ordered string OPay signs for callbacks."""
    refunded = "t" if payload.get("refunded") is True else "f"
    return (
        f'{{Amount:"{_quoted(payload.get("amount"))}",'
        f'Currency:"{_quoted(payload.get("currency"))}",'
        f'Reference:"{_quoted(payload.get("reference"))}",'
        f"Refunded:{refunded},"
        f'Status:"{_quoted(payload.get("status"))}",'
        f'Timestamp:"{_quoted(payload.get("timestamp"))}",'
        f'Token:"{_quoted(payload.get("token") or "")}",'
        f'TransactionID:"{_quoted(payload.get("transactionId"))}"}}'
    )


def opay_signature(payload: Mapping[str, Any], secret: str) -> str:
    # hashlib.sha3_512 has block_size 72, so hmac pads the key to the SHA3-512 rate
    return _hex_hmac(secret, opay_canonical_string(payload).encode("utf-8"), hashlib.sha3_512)


def verify_opay(body: Mapping[str, Any], secret: str, mode: SignatureMode) -> bool:
    """HMAC-SHA3-512 of the canonical string compared with the body's `sha512`."""
    payload = body.get("payload")
    signature = body.get("sha512")
    if not isinstance(payload, Mapping):
        logger.warning("opay callback without payload object", extra={"gateway": "OPAY"})
        return False
    if not signature or not secret:
        return _tolerated(mode, "OPAY", has_signature=bool(signature))
    expected = opay_signature(payload, secret)
    valid = hmac.compare_digest(expected.lower(), str(signature).strip().lower())
    if not valid:
        logger.warning(
            "opay signature mismatch",
            extra={"gateway": "OPAY", "reference": payload.get("reference")},
        )
    return valid


def sign_opay_request(body: bytes, secret: str) -> str:
    """Signature for OPay merchant API calls (HMAC-SHA512 over the JSON body)."""
    return _hex_hmac(secret, body, hashlib.sha512)
