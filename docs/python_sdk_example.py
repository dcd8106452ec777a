"""
Paysplit API Python client example.

Uses the requests library.
Run: pip install requests

Usage:
    from docs.python_sdk_example import PaysplitClient
    client = PaysplitClient("http://localhost:8000")
    tx = client.build_transaction("7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU")
    # sign tx["transaction"] in the wallet, submit, then:
    result = client.request_analysis("SOL", "binance", wallet, signature)
"""

from __future__ import annotations

from typing import Any

import requests


class PaysplitClientError(Exception):
    """Raised when the API returns an error response. error_kind is set for payment failures."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_kind: str | None = None,
        response: requests.Response | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_kind = error_kind
        self.response = response


class PaysplitClient:
    """Client for the Paysplit payment and analysis API."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        resp = self._session.request(method, url, params=params, json=json, timeout=self.timeout)
        if not resp.ok:
            detail: Any = resp.text
            if resp.headers.get("content-type", "").startswith("application/json"):
                detail = resp.json().get("detail", resp.text)
            kind = detail.get("error") if isinstance(detail, dict) else None
            message = detail.get("message", detail) if isinstance(detail, dict) else detail
            raise PaysplitClientError(
                f"API error: {message}",
                status_code=resp.status_code,
                error_kind=kind,
                response=resp,
            )
        return resp

    def health(self) -> dict[str, str]:
        """Liveness probe."""
        return self._request("GET", "/health").json()

    def payment_config(self) -> dict[str, Any]:
        """Price, token mint, recipients, and split amounts."""
        return self._request("GET", "/api/payment/config").json()

    def build_transaction(self, wallet: str, referrer: str | None = None) -> dict[str, Any]:
        """Unsigned payment transaction (base64) with blockhash and lastValidBlockHeight."""
        body: dict[str, Any] = {"walletAddress": wallet}
        if referrer:
            body["referrerWallet"] = referrer
        return self._request("POST", "/api/payment/transaction", json=body).json()

    def balance(self, wallet: str) -> dict[str, Any]:
        return self._request("GET", f"/api/payment/balance/{wallet}").json()

    def request_analysis(
        self,
        token_symbol: str,
        exchange: str,
        wallet: str,
        payment_signature: str,
        referrer: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        """
        Request a paid analysis. Raises PaysplitClientError with error_kind
        (e.g. "already_used", "insufficient_amount") if the payment is rejected.
        """
        body: dict[str, Any] = {
            "tokenSymbol": token_symbol,
            "exchange": exchange,
            "walletAddress": wallet,
            "paymentSignature": payment_signature,
        }
        if referrer:
            body["referrerWallet"] = referrer
        body.update(extra)
        return self._request("POST", "/api/analysis", json=body).json()

    def register_referral(self, wallet: str, referrer: str | None = None) -> dict[str, Any]:
        return self._request(
            "POST", "/api/referral/register", json={"walletAddress": wallet, "referrerWallet": referrer}
        ).json()

    def referral_stats(self, wallet: str) -> dict[str, Any]:
        """Referral link, downlines, and commission earned."""
        return self._request("GET", "/api/referral/stats", params={"walletAddress": wallet}).json()
