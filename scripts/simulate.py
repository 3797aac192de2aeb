"""
Order Flow Simulation Script

Fires a burst of concurrent orders at a running service, then polls each
one until it is OUT_FOR_DELIVERY and reports how long the lifecycle took.
Run from project root: python scripts/simulate.py
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from typing import Any, Optional

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 50

# Sample data for random orders
CUSTOMERS = ["Mobile User", "Ravi Kumar", "Anita Rao", "Sameer Khan", "Priya Nair", None]
MENU = {
    "Paradise": ["Chicken Biryani", "Mutton Biryani", "Veg Biryani"],
    "Pista House": ["Haleem", "Double Ka Meetha"],
    "Chutneys": ["Masala Dosa", "Idli Sambar", "Pesarattu"],
    "Bawarchi": ["Chicken 65", "Paneer Tikka"],
}


def generate_order_payload() -> dict[str, Any]:
    """Generate a random order body."""
    restaurant = random.choice(list(MENU))
    payload = {"item": random.choice(MENU[restaurant]), "restaurant": restaurant}
    customer = random.choice(CUSTOMERS)
    if customer:
        payload["customer_name"] = customer
    return payload


async def send_order(client: httpx.AsyncClient, order_num: int) -> dict[str, Any]:
    """POST one order and time the response."""
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/order",
            json=generate_order_payload(),
            timeout=30.0
        )
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }

    elapsed = round(time.time() - start_time, 3)
    if response.status_code != 201:
        return {
            "order_num": order_num,
            "success": False,
            "error": response.text[:100],
            "time": elapsed,
        }

    order = response.json()["order"]
    return {
        "order_num": order_num,
        "success": True,
        "order_id": order["orderId"],
        "status": order["status"],
        "time": elapsed,
        "created": time.time(),
    }


async def wait_for_delivery(
    client: httpx.AsyncClient,
    order_id: str,
    timeout: float,
) -> Optional[dict[str, Any]]:
    """Poll an order until it is out for delivery. None on timeout."""
    deadline = time.time() + timeout
    seen = set()

    while time.time() < deadline:
        try:
            response = await client.get(f"{API_BASE_URL}/order/{order_id}", timeout=10.0)
        except httpx.HTTPError:
            await asyncio.sleep(0.5)
            continue

        if response.status_code == 200:
            status = response.json()["status"]
            seen.add(status)
            if status == "OUT_FOR_DELIVERY":
                return {"order_id": order_id, "delivered_at": time.time(), "seen": seen}
        await asyncio.sleep(0.5)

    return None


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS, timeout: float = 60.0) -> dict[str, Any]:
    """
    Run the order flow simulation.

    Args:
        num_orders: Number of orders to place concurrently
        timeout: Seconds to wait for each order to go out for delivery
    """
    print("=" * 70)
    print("🔥 ORDER FLOW SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        print("\n🚀 Firing orders...\n")
        results = await asyncio.gather(*(send_order(client, i + 1) for i in range(num_orders)))
        placed_time = round(time.time() - start_time, 2)

        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        print(f"✅ Placed: {len(successful)}/{num_orders} in {placed_time}s")
        print(f"❌ Rejected: {len(failed)}/{num_orders}")

        print("\n⏳ Waiting for orders to go out for delivery...\n")
        deliveries = await asyncio.gather(*(
            wait_for_delivery(client, r["order_id"], timeout) for r in successful
        ))

    total_time = round(time.time() - start_time, 2)
    delivered = [d for d in deliveries if d is not None]
    stuck = [r["order_id"] for r, d in zip(successful, deliveries) if d is None]
    unexpected = [
        d["order_id"] for d in delivered
        if not d["seen"] <= {"PREPARING", "OUT_FOR_DELIVERY"}
    ]

    # Print results
    print("=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n🛵 Out for delivery: {len(delivered)}/{len(successful)}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print("\n📈 Performance Metrics:")
        print(f"   Average POST Response: {avg_time}s")
        print(f"   Fastest: {min(r['time'] for r in successful)}s")
        print(f"   Slowest: {max(r['time'] for r in successful)}s")

    if delivered:
        created = {r["order_id"]: r["created"] for r in successful}
        lifecycles = [d["delivered_at"] - created[d["order_id"]] for d in delivered]
        print(f"   Average Lifecycle: {sum(lifecycles) / len(lifecycles):.2f}s")
        print(f"   Longest Lifecycle: {max(lifecycles):.2f}s")

    if failed:
        print("\n⚠️  Rejected Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    if stuck:
        print(f"\n⚠️  Still PREPARING after {timeout}s (showing first 5):")
        for order_id in stuck[:5]:
            print(f"   {order_id}")

    if unexpected:
        print(f"\n❌ Orders reported an unknown status: {unexpected[:5]}")

    print("=" * 70)

    return {
        "total": num_orders,
        "placed": len(successful),
        "delivered": len(delivered),
        "stuck": stuck,
        "total_time": total_time,
    }


async def check_health() -> bool:
    """Pre-flight check against /health."""
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health", timeout=10.0)
        except httpx.HTTPError as e:
            print(f"❌ Service unreachable: {e}")
            return False

    if response.status_code != 200:
        print(f"❌ Health check failed: {response.text}")
        return False

    data = response.json()
    print(f"✅ Status: {data.get('status')}")
    print(f"   Store: {data.get('store')}")
    print(f"   Notifications: {data.get('notification_service')}")
    print(f"   Worker: {data.get('worker')}")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Order Flow Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait per order")
    parser.add_argument("--url", default=API_BASE_URL, help="Service base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")

    if not asyncio.run(check_health()):
        sys.exit(1)

    summary = asyncio.run(run_simulation(num_orders=args.orders, timeout=args.timeout))
    sys.exit(0 if summary["delivered"] == summary["placed"] else 1)
