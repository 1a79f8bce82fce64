import asyncio
import csv

import httpx

from hepeco_server.export_client import PAYMENT_FIELDS, export_all

PAYMENTS = {
    "success": True,
    "count": 2,
    "summary": {"total": 2, "byStatus": {"pending": 1, "verified": 1}, "verifiedAmount": 450000},
    "payments": [
        {
            "reference": "HEC000000000001",
            "amount": 450000,
            "phone": "265991234567",
            "method": "mpamba",
            "status": "verified",
            "createdAt": "2026-03-02T09:00:00Z",
            "verifiedAt": "2026-03-02T09:01:00Z",
            "transactionId": "MP1",
            "fraudReasons": [],
        },
        {
            "reference": "HEC000000000002",
            "amount": 330000,
            "phone": "265881234567",
            "method": "airtel",
            "status": "pending",
            "createdAt": "2026-03-02T09:05:00Z",
            "verifiedAt": None,
            "transactionId": None,
        },
    ],
}


def run_export(handler, tmp_path):
    async def scenario():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url="http://hepeco.test") as client:
            return await export_all(
                "http://hepeco.test",
                "admin-secret",
                payments_file=str(tmp_path / "payments.csv"),
                quotes_file=str(tmp_path / "quotes.csv"),
                client=client,
            )

    return asyncio.run(scenario())


def test_export_writes_csv_files(tmp_path):
    seen_tokens = []

    def handler(request):
        seen_tokens.append(request.headers.get("X-Admin-Token"))
        if request.url.path == "/api/admin/payments":
            return httpx.Response(200, json=PAYMENTS)
        return httpx.Response(200, json={"success": True, "count": 0, "byService": {}, "quotes": []})

    written = run_export(handler, tmp_path)

    assert written == {str(tmp_path / "payments.csv"): 2, str(tmp_path / "quotes.csv"): 0}
    assert seen_tokens == ["admin-secret", "admin-secret"]
    with open(tmp_path / "payments.csv", newline="") as f:
        rows = list(csv.DictReader(f))
    assert list(rows[0]) == PAYMENT_FIELDS
    assert rows[0]["reference"] == "HEC000000000001"
    assert rows[1]["verifiedAt"] == ""


def test_export_skips_rejected_listings(tmp_path):
    def handler(request):
        return httpx.Response(401, json={"success": False, "error": "unauthorized"})

    assert run_export(handler, tmp_path) == {}
    assert not (tmp_path / "payments.csv").exists()


def test_export_retries_server_errors(tmp_path, monkeypatch):
    attempts = []

    async def no_sleep(delay):
        return None

    monkeypatch.setattr("hepeco_server.retry.asyncio.sleep", no_sleep)

    def handler(request):
        attempts.append(request.url.path)
        if request.url.path == "/api/admin/payments" and attempts.count("/api/admin/payments") == 1:
            return httpx.Response(503)
        if request.url.path == "/api/admin/payments":
            return httpx.Response(200, json=PAYMENTS)
        return httpx.Response(200, json={"success": True, "count": 0, "byService": {}, "quotes": []})

    written = run_export(handler, tmp_path)

    assert written[str(tmp_path / "payments.csv")] == 2
    assert attempts.count("/api/admin/payments") == 2
