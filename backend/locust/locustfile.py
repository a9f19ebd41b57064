"""
Locust Load Test Suite

Trip creation needs an admin account; point the suite at one with
LOAD_ADMIN_EMAIL / LOAD_ADMIN_PASSWORD. The webhook scenario signs payloads
with PAYSTACK_SECRET_KEY, the same secret the server is configured with.

Run scenarios:
  locust -f locustfile.py --tags contention   # Many riders, one seat
  locust -f locustfile.py --tags webhook      # Duplicate deliveries for one payment
  locust -f locustfile.py --tags throughput   # Trip search cache
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import hashlib
import hmac
import json
import os
import random
import string
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

ADMIN_EMAIL = os.getenv("LOAD_ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("LOAD_ADMIN_PASSWORD", "adminpassword123")
PAYSTACK_SECRET = os.getenv("PAYSTACK_SECRET_KEY", "")
PASSWORD = "loadtest-password"

# Shared state
TRIP_IDS = []
CONTENTION_TRIP_ID = None
SHARED_PAYMENT_REFERENCE = None

ROUTES = [("Lagos", "Abuja"), ("Lagos", "Ibadan"), ("Abuja", "Kano"), ("Enugu", "Port Harcourt")]


def random_email():
    return f"load_{random.randint(10000, 99999)}@test.com"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=8))


def passenger():
    return {"name": "Load Rider", "phone": f"080{random.randint(10000000, 99999999)}"}


def admin_headers(client):
    resp = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    if resp.status_code != 200:
        return {}
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def create_trip(client, headers, seats, origin="Lagos", destination="Abuja"):
    departure = (datetime.now(timezone.utc) + timedelta(days=random.randint(2, 30))).isoformat()
    resp = client.post(
        "/api/v1/trips/",
        json={
            "origin": origin,
            "destination": destination,
            "departure_time": departure,
            "price": "7500.00",
            "total_seats": seats,
            "bus_number": f"LOAD-{random.randint(100, 999)}",
        },
        headers=headers,
    )
    if resp.status_code == 201:
        return resp.json()["id"]
    return None


def rider_headers(client):
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": PASSWORD,
    })
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    if resp.status_code != 200:
        return {}
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: trips are created as {ADMIN_EMAIL}")
    print("=" * 60)


class SeatContentionUser(HttpUser):
    """
    TEST 1: Contention - every rider wants seat 1 on the same bus

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM seat_holds WHERE trip_id = X AND seat_number = '1';
    Should be exactly 1, and trips.available_seats = total_seats - COUNT(seat_holds).
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = rider_headers(self.client)
        if not CONTENTION_TRIP_ID:
            trip_id = create_trip(self.client, admin_headers(self.client), seats=10)
            if trip_id:
                globals()["CONTENTION_TRIP_ID"] = trip_id
                print(f"\n✓ Created trip {trip_id} with 10 seats\n")

    @tag("contention")
    @task(3)
    def grab_front_seat(self):
        """Everybody wants the seat behind the driver."""
        self._book(["1"], name="/api/v1/bookings/ [seat 1]")

    @tag("contention")
    @task(1)
    def grab_random_pair(self):
        first = random.randint(1, 9)
        self._book([str(first), str(first + 1)], name="/api/v1/bookings/ [pair]")

    def _book(self, seats, name):
        if not CONTENTION_TRIP_ID or not self.headers:
            return

        with self.client.post("/api/v1/bookings/",
            json={"trip_id": CONTENTION_TRIP_ID, "passenger": passenger(), "seat_numbers": seats},
            headers=self.headers,
            name=name,
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: seat taken or sold out
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class DuplicateWebhookUser(HttpUser):
    """
    TEST 2: Duplicate delivery - one Paystack payment, many webhooks and polls

    Run: locust -f locustfile.py --tags webhook -u 50 -r 25 --run-time 30s

    Settle the payment in the Paystack dashboard (or the sandbox) while the
    test runs. After test, verify the booking has exactly one EARNED row:
      SELECT COUNT(*) FROM loyalty_transactions WHERE booking_id = X;
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.headers = rider_headers(self.client)
        if SHARED_PAYMENT_REFERENCE or not self.headers:
            return
        trip_id = create_trip(self.client, admin_headers(self.client), seats=20)
        if not trip_id:
            return
        resp = self.client.post("/api/v1/bookings/",
            json={"trip_id": trip_id, "passenger": passenger(), "seat_numbers": ["1"]},
            headers=self.headers)
        if resp.status_code != 201:
            return
        resp = self.client.post("/api/v1/payments/initialize",
            json={"booking_reference": resp.json()["booking_reference"], "provider": "paystack"},
            headers=self.headers)
        if resp.status_code == 200:
            globals()["SHARED_PAYMENT_REFERENCE"] = resp.json()["payment_reference"]
            print(f"\n✓ Payment {SHARED_PAYMENT_REFERENCE} ready for duplicate deliveries\n")

    @tag("webhook")
    @task(3)
    def deliver_webhook(self):
        if not SHARED_PAYMENT_REFERENCE or not PAYSTACK_SECRET:
            return
        body = json.dumps({
            "event": "charge.success",
            "data": {"reference": SHARED_PAYMENT_REFERENCE},
        }).encode()
        signature = hmac.new(PAYSTACK_SECRET.encode(), body, hashlib.sha512).hexdigest()

        with self.client.post("/api/v1/payments/webhook/paystack",
            data=body,
            headers={"x-paystack-signature": signature, "Content-Type": "application/json"},
            catch_response=True
        ) as resp:
            if resp.status_code in [200, 502]:
                resp.success()  # 502: gateway re-verification failed, Paystack retries
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("webhook")
    @task(1)
    def poll_status(self):
        if not SHARED_PAYMENT_REFERENCE or not self.headers:
            return
        with self.client.get("/api/v1/payments/verify",
            params={"reference": SHARED_PAYMENT_REFERENCE},
            headers=self.headers,
            name="/api/v1/payments/verify",
            catch_response=True
        ) as resp:
            if resp.status_code in [200, 202, 502]:
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 3: Throughput - trip search cache

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare avg response time, requests/sec and P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def search_trips_cached(self):
        origin, destination = random.choice(ROUTES)
        resp = self.client.get(
            f"/api/v1/trips/?origin={origin}&destination={destination}&page=1&page_size=20",
            name="/api/v1/trips/ [cached]")
        if resp.status_code == 200:
            for trip in resp.json().get("trips", []):
                if trip["id"] not in TRIP_IDS:
                    TRIP_IDS.append(trip["id"])

    @tag("throughput", "read")
    @task(3)
    def seat_map(self):
        if TRIP_IDS:
            self.client.get(f"/api/v1/trips/{random.choice(TRIP_IDS)}/seats",
                name="/api/v1/trips/{id}/seats")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = rider_headers(self.client)

    def _expect(self, payload, allowed, headers=None):
        with self.client.post("/api/v1/bookings/",
            json=payload,
            headers=self.headers if headers is None else headers,
            catch_response=True
        ) as resp:
            if resp.status_code in allowed:
                resp.success()
            else:
                resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_trip(self):
        self._expect({"trip_id": 999999, "passenger": passenger(), "seat_numbers": ["1"]}, [404])

    @tag("edge")
    @task
    def no_seats(self):
        self._expect({"trip_id": 1, "passenger": passenger(), "seat_numbers": []}, [400, 422])

    @tag("edge")
    @task
    def duplicate_seats(self):
        self._expect({"trip_id": 1, "passenger": passenger(), "seat_numbers": ["2", "2"]}, [400, 404])

    @tag("edge")
    @task
    def seat_not_on_bus(self):
        self._expect({"trip_id": 1, "passenger": passenger(), "seat_numbers": ["999"]}, [400, 404])

    @tag("edge")
    @task
    def bad_phone(self):
        self._expect(
            {"trip_id": 1, "passenger": {"name": "Rider", "phone": "call me"}, "seat_numbers": ["1"]},
            [400, 404, 422],
        )

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        self._expect({"trip_id": 1, "passenger": passenger(), "seat_numbers": ["1"]}, [401], headers={})

    @tag("edge")
    @task
    def forged_webhook(self):
        with self.client.post("/api/v1/payments/webhook/paystack",
            data=b'{"event":"charge.success","data":{"reference":"SAH_PST_FAKE"}}',
            headers={"x-paystack-signature": "0" * 128},
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 401]:
                resp.success()
            else:
                resp.failure(f"Expected 400/401, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 5: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly searching and looking at seat maps
      - Some bookings, some of which are cancelled again
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = rider_headers(self.client)
        self.bookings = []

    @task(50)
    def search(self):
        origin, destination = random.choice(ROUTES)
        resp = self.client.get(f"/api/v1/trips/?origin={origin}&destination={destination}",
            name="/api/v1/trips/")
        if resp.status_code == 200:
            for trip in resp.json().get("trips", []):
                if trip["id"] not in TRIP_IDS:
                    TRIP_IDS.append(trip["id"])

    @task(20)
    def view_seats(self):
        if TRIP_IDS:
            self.client.get(f"/api/v1/trips/{random.choice(TRIP_IDS)}/seats",
                name="/api/v1/trips/{id}/seats")

    @task(10)
    def book_seats(self):
        if not TRIP_IDS or not self.headers:
            return
        trip_id = random.choice(TRIP_IDS)
        seats = self.client.get(f"/api/v1/trips/{trip_id}/seats", name="/api/v1/trips/{id}/seats")
        if seats.status_code != 200:
            return
        free = seats.json()["available_seat_numbers"]
        if not free:
            return
        chosen = random.sample(free, min(len(free), random.randint(1, 3)))
        resp = self.client.post("/api/v1/bookings/",
            json={"trip_id": trip_id, "passenger": passenger(), "seat_numbers": chosen},
            headers=self.headers)
        if resp.status_code == 201:
            self.bookings.append(resp.json()["booking_reference"])

    @task(3)
    def cancel_booking(self):
        if self.bookings:
            reference = self.bookings.pop()
            self.client.post(f"/api/v1/bookings/{reference}/cancel",
                headers=self.headers, name="/api/v1/bookings/{ref}/cancel")

    @task(1)
    def add_trip(self):
        """Rare: ops adds a bus."""
        origin, destination = random.choice(ROUTES)
        trip_id = create_trip(self.client, admin_headers(self.client), random.randint(14, 60), origin, destination)
        if trip_id:
            TRIP_IDS.append(trip_id)
