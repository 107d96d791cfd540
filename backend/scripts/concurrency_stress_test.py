"""
CRITICAL WARNING:
Do NOT run against production database.
These scripts intentionally trigger conflict scenarios.
Use only in local or CI test environments.

Races payouts against a running server:
1. 10 parallel approvals of the last task of a completion project must
   produce exactly one final payout.
2. 10 parallel manual payouts replaying one Idempotency-Key must pay once.

Credentials come from STRESS_COMMISSIONER / STRESS_FREELANCER
("username:password").
"""

import os
import sys
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed

import requests

BASE = os.environ.get("STRESS_BASE_URL", "http://127.0.0.1:8000/api/v1")
LOGIN_URL = f"{BASE}/auth/login"
PARALLEL = 10


def safe_json(resp, label):
    if "application/json" not in resp.headers.get("Content-Type", ""):
        print(f"[{label}] Non-JSON: {resp.text[:200]}")
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def login(env_name, default):
    username, _, password = os.environ.get(env_name, default).partition(":")
    r = requests.post(LOGIN_URL, json={"username": username, "password": password})
    data = safe_json(r, "LOGIN")
    if not data or "data" not in data or "token" not in data["data"]:
        print(f"LOGIN {username} failed:", getattr(r, "status_code", None), data)
        sys.exit(1)
    return data["data"]["token"], data["data"]["user"]["id"]


def headers(token, idem=None):
    h = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }
    if idem:
        h["Idempotency-Key"] = idem
    return h


def post(token, path, label, payload=None, idem=None):
    r = requests.post(
        f"{BASE}{path}",
        headers=headers(token, idem or str(uuid.uuid4())),
        json=payload or {},
    )
    j = safe_json(r, label)
    if r.status_code >= 400 or not j or "data" not in j:
        print(f"{label} failed:", r.status_code, j)
        sys.exit(1)
    return j["data"]


def create_completion_project(token, freelancer_id, title):
    return post(
        token,
        "/projects",
        "CREATE PROJECT",
        {
            "orgLetter": "S",
            "title": title,
            "invoicingMethod": "completion",
            "totalBudget": "5000.00",
            "freelancerId": freelancer_id,
            "tasks": ["Stress task"],
        },
    )


def race(func):
    results = []
    with ThreadPoolExecutor(max_workers=PARALLEL) as pool:
        futures = [pool.submit(func, i) for i in range(PARALLEL)]
        for f in as_completed(futures):
            results.append(f.result())
    return results


def race_final_payout(commissioner, freelancer, freelancer_id):
    project = create_completion_project(commissioner, freelancer_id, "StressFinal")
    task_id = project["tasks"][0]["taskId"]
    post(freelancer, f"/tasks/{task_id}/submit", "SUBMIT")

    def approve_once(_):
        resp = requests.post(
            f"{BASE}/tasks/{task_id}/approve",
            headers=headers(commissioner, str(uuid.uuid4())),
        )
        body = safe_json(resp, "APPROVE") or {}
        return resp.status_code, (body.get("data") or {}).get("payoutInvoiceNumber")

    results = race(approve_once)
    codes = sorted(code for code, _ in results)
    finals = {number for _, number in results if number}
    if any(code != 200 for code in codes) or len(finals) != 1:
        print(f"INVARIANT BROKEN: final payouts {sorted(finals)}, codes {codes}")
        sys.exit(1)
    print(f"OK: {PARALLEL} approvals, one final payout ({finals.pop()}).")


def race_manual_payout(commissioner, freelancer_id):
    project = create_completion_project(commissioner, freelancer_id, "StressManual")
    project_id = project["projectId"]
    key = f"stress-{uuid.uuid4()}"

    def pay_once(_):
        resp = requests.post(
            f"{BASE}/projects/{project_id}/manual-payouts",
            headers=headers(commissioner, key),
            json={"amount": "100.00"},
        )
        return resp.status_code

    codes = race(pay_once)
    created = codes.count(201)
    replayed = sum(1 for c in codes if c in (200, 409))
    if created != 1 or replayed != PARALLEL - 1:
        print(f"INVARIANT BROKEN: expected 1x201; got {sorted(codes)}")
        sys.exit(1)
    print(f"OK: 1x201, {replayed} replays paid nothing.")


def run():
    print(f"=== Payout concurrency stress test ({PARALLEL} parallel callers) ===")
    commissioner, _ = login("STRESS_COMMISSIONER", "commissioner:commissioner123")
    freelancer, freelancer_id = login("STRESS_FREELANCER", "freelancer:freelancer123")

    race_final_payout(commissioner, freelancer, freelancer_id)
    race_manual_payout(commissioner, freelancer_id)


if __name__ == "__main__":
    run()
