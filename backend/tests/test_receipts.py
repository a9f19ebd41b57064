"""
Tests for the bank transfer rail: instructions, receipt upload and admin review.
"""

from pathlib import Path

import pytest
from httpx import AsyncClient

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


async def _bank_booking(client: AsyncClient, headers: dict, trip_id: int, seats: list[str]) -> tuple[str, str]:
    created = await client.post(
        "/api/v1/bookings/",
        json={
            "trip_id": trip_id,
            "passenger": {"name": "Ngozi Eze", "phone": "+2348020000000"},
            "seat_numbers": seats,
        },
        headers=headers,
    )
    assert created.status_code == 201
    reference = created.json()["booking_reference"]

    init = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_reference": reference, "provider": "bank_transfer"},
        headers=headers,
    )
    assert init.status_code == 200
    data = init.json()
    assert data["redirect_url"] is None
    assert data["instructions"]["amount"] == data["amount"]
    return reference, data["payment_reference"]


async def _upload(client, headers, booking_ref, payment_ref, amount="5000.00", content=PNG, content_type="image/png"):
    return await client.post(
        "/api/v1/payments/receipts",
        data={"booking_reference": booking_ref, "payment_reference": payment_ref, "amount_paid": amount},
        files={"file": ("transfer.png", content, content_type)},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_upload_and_approve_confirms_booking(client: AsyncClient, auth_headers, admin_headers, test_trip):
    booking_ref, payment_ref = await _bank_booking(client, auth_headers, test_trip.id, ["1"])

    upload = await _upload(client, auth_headers, booking_ref, payment_ref)
    assert upload.status_code == 201
    assert upload.json()["status"] == "PENDING"
    assert upload.json()["amount_paid"] == "5000.00"

    # Nothing happens until an admin looks at it
    verify = await client.get("/api/v1/payments/verify", params={"reference": payment_ref}, headers=auth_headers)
    assert verify.json()["outcome"] == "pending"

    approve = await client.post(f"/api/v1/payments/receipts/{booking_ref}/approve", headers=admin_headers)
    assert approve.status_code == 200
    assert approve.json()["outcome"] == "confirmed"
    assert approve.json()["booking_status"] == "CONFIRMED"

    booking = await client.get(f"/api/v1/bookings/{booking_ref}", headers=auth_headers)
    assert booking.json()["payment_status"] == "COMPLETED"
    assert booking.json()["loyalty_points_earned"] == 50


@pytest.mark.asyncio
async def test_reject_cancels_and_releases(client: AsyncClient, auth_headers, admin_headers, test_trip):
    trip_id = test_trip.id
    booking_ref, payment_ref = await _bank_booking(client, auth_headers, trip_id, ["1", "2"])
    await _upload(client, auth_headers, booking_ref, payment_ref, amount="10000.00")

    reject = await client.post(
        f"/api/v1/payments/receipts/{booking_ref}/reject",
        json={"notes": "Transfer not found on statement"},
        headers=admin_headers,
    )
    assert reject.status_code == 200
    assert reject.json()["outcome"] == "cancelled"

    trip = await client.get(f"/api/v1/trips/{trip_id}")
    assert trip.json()["available_seats"] == 12


@pytest.mark.asyncio
async def test_approved_short_payment_goes_to_review(client: AsyncClient, auth_headers, admin_headers, test_trip):
    booking_ref, payment_ref = await _bank_booking(client, auth_headers, test_trip.id, ["1"])
    await _upload(client, auth_headers, booking_ref, payment_ref, amount="4000.00")

    approve = await client.post(f"/api/v1/payments/receipts/{booking_ref}/approve", headers=admin_headers)
    assert approve.status_code == 202
    assert approve.json()["outcome"] == "under_review"

    resolved = await client.post(
        f"/api/v1/payments/review/{booking_ref}", json={"approve": True}, headers=admin_headers
    )
    assert resolved.status_code == 200
    assert resolved.json()["booking_status"] == "CONFIRMED"


@pytest.mark.asyncio
async def test_receipt_validation(client: AsyncClient, auth_headers, test_trip):
    booking_ref, payment_ref = await _bank_booking(client, auth_headers, test_trip.id, ["1"])

    wrong_type = await _upload(client, auth_headers, booking_ref, payment_ref, content=b"%PDF-1.4", content_type="application/pdf")
    assert wrong_type.status_code == 400

    too_big = await _upload(client, auth_headers, booking_ref, payment_ref, content=b"\x00" * (5 * 1024 * 1024 + 1))
    assert too_big.status_code == 400

    wrong_reference = await _upload(client, auth_headers, booking_ref, "SAH_BNK_SOMETHING_ELSE")
    assert wrong_reference.status_code == 400

    ok = await _upload(client, auth_headers, booking_ref, payment_ref)
    assert ok.status_code == 201
    assert Path(ok.json()["original_filename"]).name == "transfer.png"

    duplicate = await _upload(client, auth_headers, booking_ref, payment_ref)
    assert duplicate.status_code == 400


@pytest.mark.asyncio
async def test_pending_receipt_blocks_switching_rail(client: AsyncClient, auth_headers, test_trip):
    booking_ref, payment_ref = await _bank_booking(client, auth_headers, test_trip.id, ["1"])
    await _upload(client, auth_headers, booking_ref, payment_ref)

    response = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_reference": booking_ref, "provider": "paystack"},
        headers=auth_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_receipt_needs_bank_transfer_rail(client: AsyncClient, auth_headers, test_trip):
    created = await client.post(
        "/api/v1/bookings/",
        json={"trip_id": test_trip.id, "passenger": {"name": "Ngozi Eze", "phone": "08020000000"}, "seat_numbers": ["1"]},
        headers=auth_headers,
    )
    booking_ref = created.json()["booking_reference"]
    init = await client.post(
        "/api/v1/payments/initialize",
        json={"booking_reference": booking_ref, "provider": "paystack"},
        headers=auth_headers,
    )
    assert init.status_code == 200
    assert init.json()["redirect_url"].startswith("https://checkout.paystack.test/")

    response = await _upload(client, auth_headers, booking_ref, init.json()["payment_reference"])
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_only_admin_reviews_receipts(client: AsyncClient, auth_headers, test_trip):
    booking_ref, payment_ref = await _bank_booking(client, auth_headers, test_trip.id, ["1"])
    await _upload(client, auth_headers, booking_ref, payment_ref)

    response = await client.post(f"/api/v1/payments/receipts/{booking_ref}/approve", headers=auth_headers)
    assert response.status_code == 403
