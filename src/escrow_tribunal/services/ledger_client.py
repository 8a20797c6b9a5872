"""HTTP client for a remote ledger custodian."""

from __future__ import annotations

import httpx

from escrow_tribunal.exceptions import EscrowTransferFailedError


class LedgerClient:
    """Sync client for escrow deposit and release operations."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: int,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=float(timeout_seconds),
            transport=transport,
        )

    def _post(self, path: str, payload: dict[str, object]) -> None:
        try:
            response = self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise EscrowTransferFailedError(
                "Cannot reach ledger service",
                {"path": path},
            ) from exc

        if not response.is_success:
            raise EscrowTransferFailedError(
                f"Ledger returned unexpected status {response.status_code}",
                {"path": path, "status_code": response.status_code},
            )

    def deposit(self, case_id: str, payer_id: str, amount: int, is_fee: bool) -> None:
        """Move funds from a payer into the case's escrow."""
        self._post(
            "/escrow/deposit",
            {"case_id": case_id, "payer_id": payer_id, "amount": amount, "is_fee": is_fee},
        )

    def release_funds(self, recipient_id: str, amount: int, case_id: str) -> None:
        """Move funds out of the case's escrow to a recipient."""
        self._post(
            "/escrow/release",
            {"case_id": case_id, "recipient_id": recipient_id, "amount": amount},
        )

    def close(self) -> None:
        """Close the underlying client."""
        self._client.close()
