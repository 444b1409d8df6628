"""
Concurrency Simulation Script

Fires many simultaneous deployments of the demo package at one tenant and
checks that exactly one of them installs the modules.
Run from project root: python scripts/simulate.py

The API must be running (uvicorn package_deployer.main:app --port 8001).
"""

import argparse
import asyncio
import sys
import time
from collections import Counter
from datetime import datetime
from typing import Any, Optional

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
DEMO_TENANT_ID = "7f1c2d3e-0000-4000-8000-0000000000d1"
PACKAGE_CODE = "PKG-RESTAURANT"
TOTAL_REQUESTS = 20


def deployment_payload(package_id: str, tenant_id: str) -> dict[str, Any]:
    """Request body for a full restaurant deployment."""
    return {
        "tenantId": tenant_id,
        "packageId": package_id,
        "actorId": "demo-owner",
        "options": {
            "businessSize": "small",
            "setupChartOfAccounts": True,
            "createDefaultWorkflows": True,
            "assignUsers": [
                {"userId": "demo-owner", "role": "owner", "modules": ["SYS-GL-CORE", "SYS-AR-MGMT"]},
                {"userId": "demo-chef", "role": "staff", "modules": ["SYS-INVENTORY"]},
            ],
        },
    }


async def send_deployment(
    client: httpx.AsyncClient,
    request_num: int,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """POST one deployment and record its outcome."""
    start_time = time.time()
    try:
        response = await client.post(
            f"{API_BASE_URL}/api/templates/packages/deploy",
            json=payload,
            timeout=60.0,
        )
        elapsed = round(time.time() - start_time, 3)
        data = response.json()
        return {
            "request_num": request_num,
            "status_code": response.status_code,
            "status": data.get("status"),
            "transaction_id": data.get("transactionId"),
            "summary": data.get("summary"),
            "error": data.get("error"),
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        elapsed = round(time.time() - start_time, 3)
        return {
            "request_num": request_num,
            "status_code": None,
            "error": str(e)[:100],
            "time": elapsed,
        }


async def find_package_id(client: httpx.AsyncClient, tenant_id: str) -> Optional[str]:
    response = await client.get(
        f"{API_BASE_URL}/api/templates/packages", params={"tenantId": tenant_id}
    )
    response.raise_for_status()
    for package in response.json()["packages"]:
        if package["code"] == PACKAGE_CODE:
            return package["id"]
    return None


# =============================================================================
# PRE-FLIGHT
# =============================================================================

async def test_single_flows(tenant_id: str) -> Optional[str]:
    """Health and catalog checks; returns the package id to deploy."""
    print("\n" + "=" * 70)
    print("🧪 PRE-FLIGHT CHECKS")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        print("\n1️⃣ Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return None
        data = response.json()
        print(f"   ✅ Status: {data.get('status')}")
        print(f"   Store: {data.get('store')}")
        print(f"   Lock: {data.get('lock')}")

        print("\n2️⃣ Package Catalog...")
        package_id = await find_package_id(client, tenant_id)
        if package_id is None:
            print(f"   ❌ {PACKAGE_CODE} not visible to tenant {tenant_id}")
            print("   Seed the catalog first: python scripts/seed_catalog.py")
            return None
        print(f"   ✅ {PACKAGE_CODE}: {package_id}")

        print("\n3️⃣ Deployed Modules...")
        response = await client.get(f"{API_BASE_URL}/api/tenants/{tenant_id}/modules")
        if response.status_code != 200:
            print(f"   ❌ Failed: {response.text}")
            return None
        print(f"   ✅ Already deployed: {response.json()['count']}")

    print("\n" + "=" * 70)
    return package_id


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    package_id: str,
    tenant_id: str = DEMO_TENANT_ID,
    num_requests: int = TOTAL_REQUESTS,
) -> dict[str, Any]:
    """
    Deploy the same package `num_requests` times at once.

    Expected: one 201, every other request 409 (busy tenant or already
    deployed), and one deployed module per package module.
    """
    print("=" * 70)
    print("🔥 CONCURRENCY SIMULATION - SAME TENANT, SAME PACKAGE")
    print("=" * 70)
    print(f"📋 Requests: {num_requests}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"🏢 Tenant: {tenant_id}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    payload = deployment_payload(package_id, tenant_id)
    start_time = time.time()

    async with httpx.AsyncClient() as client:
        print("\n🚀 Firing deployments...\n")
        tasks = [send_deployment(client, i + 1, payload) for i in range(num_requests)]
        results = await asyncio.gather(*tasks)

        total_time = round(time.time() - start_time, 2)
        codes = Counter(r["status_code"] for r in results)
        winners = [r for r in results if r["status_code"] == 201]

        print("\n" + "=" * 70)
        print("📊 SIMULATION RESULTS")
        print("=" * 70)
        for code, count in sorted(codes.items(), key=lambda item: str(item[0])):
            print(f"   HTTP {code}: {count}")
        print(f"⏱️  Total Time: {total_time}s")

        for winner in winners:
            print(f"\n✅ Request #{winner['request_num']} deployed ({winner['status']})")
            print(f"   Summary: {winner['summary']}")

        errors = [r for r in results if r["status_code"] not in (201, 409)]
        if errors:
            print("\n⚠️  Unexpected responses (showing first 5):")
            for r in errors[:5]:
                print(f"   Request #{r['request_num']}: {r.get('status_code')} {r.get('error')}")

        print("\n" + "=" * 70)
        print("🔍 VERIFICATION")
        print("=" * 70)

        response = await client.get(f"{API_BASE_URL}/api/tenants/{tenant_id}/modules")
        modules = response.json().get("modules", [])
        codes_deployed = Counter(m["code"] for m in modules)
        duplicates = [code for code, count in codes_deployed.items() if count > 1]
        print(f"   Deployed modules: {len(modules)}")
        print(f"   {'❌ Duplicates: ' + str(duplicates) if duplicates else '✅ No duplicate modules'}")

        if winners:
            transaction_id = winners[0]["transaction_id"]
            response = await client.get(
                f"{API_BASE_URL}/api/tenants/{tenant_id}/deployments/{transaction_id}"
            )
            record = response.json()
            print(f"   Audit record: {record.get('transactionNumber')} [{record.get('status')}]")
            print(f"   Audit lines: {len(record.get('lines', []))}")

        response = await client.post(
            f"{API_BASE_URL}/api/templates/packages/deploy", json=payload
        )
        redeploy_ok = response.status_code == 409
        print(f"   {'✅' if redeploy_ok else '❌'} Redeploy returns {response.status_code}")
        print("=" * 70)

    return {
        "total": num_requests,
        "deployed": len(winners),
        "status_codes": dict(codes),
        "duplicates": duplicates,
        "redeploy_rejected": redeploy_ok,
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrency Simulation Script")
    parser.add_argument("--tenant", default=DEMO_TENANT_ID, help="Target tenant id")
    parser.add_argument("--requests", type=int, default=TOTAL_REQUESTS, help="Concurrent deployments")
    args = parser.parse_args()

    package_id = asyncio.run(test_single_flows(args.tenant))
    if package_id is None:
        print("\n❌ Pre-flight checks failed. Fix issues before running simulation.")
        sys.exit(1)
    print("\n✅ Pre-flight checks passed!")

    summary = asyncio.run(run_simulation(package_id, args.tenant, args.requests))
    ok = summary["deployed"] <= 1 and not summary["duplicates"] and summary["redeploy_rejected"]
    sys.exit(0 if ok else 1)
