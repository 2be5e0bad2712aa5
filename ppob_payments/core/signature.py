"""
Digiflazz request signatures.

Every request carries ``sign = md5(username + api_key + nonce)`` as lowercase
hex. The nonce is the ref_id for purchase and status calls, and a fixed
command word for account-level calls. Webhooks are signed the other way
round: HMAC-SHA1 over the raw body with the webhook secret.
"""
import hashlib
import hmac

BALANCE_NONCE = "depo"
PRICE_LIST_NONCE = "pricelist"


def sign(*parts: str) -> str:
    """
    Concatenate ``parts`` and return the lowercase hex MD5 digest.

    Args:
        *parts: Username, API key and nonce, in that order

    Returns:
        str: 32-character hex signature
    """
    return hashlib.md5("".join(parts).encode("utf-8")).hexdigest()


def sign_transaction(username: str, api_key: str, ref_id: str) -> str:
    return sign(username, api_key, ref_id)


def sign_balance(username: str, api_key: str) -> str:
    return sign(username, api_key, BALANCE_NONCE)


def sign_price_list(username: str, api_key: str) -> str:
    return sign(username, api_key, PRICE_LIST_NONCE)


def webhook_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha1).hexdigest()


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of an ``X-Digiflazz-Signature`` header value."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(webhook_signature(body, secret), signature.strip().lower())
