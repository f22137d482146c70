import hashlib
import hmac
from typing import Any, Dict, Optional

import requests


DEFAULT_BASE_URL = "https://api.abacatepay.com/v1"


class AbacatePayError(Exception):
    """Raised when the AbacatePay API rejects a request or returns an error body."""


class AbacatePaySDK:
    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL, timeout: float = 15.0) -> None:
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _unwrap(self, response: requests.Response) -> Dict[str, Any]:
        if not response.ok:
            try:
                details = response.json()
            except ValueError:
                details = response.text
            raise AbacatePayError(f"AbacatePay request failed ({response.status_code}): {details}")

        body = response.json()
        # Successful responses are wrapped as {"data": {...}, "error": null}
        if body.get("error"):
            raise AbacatePayError(str(body["error"]))
        return body.get("data") or {}

    def _post(self, endpoint: str, payload: Optional[Dict[str, Any]] = None, params: Optional[Dict[str, Any]] = None):
        response = requests.post(
            f"{self.base_url}/{endpoint}",
            json=payload or {},
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
        )
        return self._unwrap(response)

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None):
        response = requests.get(
            f"{self.base_url}/{endpoint}",
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
        )
        return self._unwrap(response)

    def create_pix_qr_code(self, amount: int, expires_in: int, description: str) -> Dict[str, Any]:
        """``amount`` is in cents. Returns the charge with ``id``, ``brCode`` and ``brCodeBase64``."""
        payload = {
            "amount": amount,
            "expiresIn": expires_in,
            "description": description,
        }
        return self._post("pixQrCode/create", payload)

    def simulate_payment(self, pix_id: str) -> Dict[str, Any]:
        # Only honoured by the gateway in dev mode
        return self._post("pixQrCode/simulate-payment", params={"id": pix_id})

    def check_pix_status(self, pix_id: str) -> Dict[str, Any]:
        return self._get("pixQrCode/check", params={"id": pix_id})

    @staticmethod
    def sign_webhook_body(raw_body: bytes, secret: str) -> str:
        return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()

    @classmethod
    def verify_webhook_signature(cls, raw_body: bytes, signature: str, secret: str) -> bool:
        if not signature or not secret:
            return False
        expected = cls.sign_webhook_body(raw_body, secret)
        return hmac.compare_digest(expected, signature.strip().lower())
