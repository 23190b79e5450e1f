"""
StockLedger Load Testing with Locust

Run against a dev server (from backend/: flask --app wsgi run --port 5001):
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1500ms for writes and exports
- Error rate < 1% (409 insufficient_stock is an expected answer, not an error)
- GET /api/stock/balances never reports a negative balance
"""

import random
import time
import uuid
from typing import Dict, List

from locust import HttpUser, task, between, events


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Per-endpoint latency and error counts, plus ledger sanity violations."""

    def __init__(self):
        self.response_times: Dict[str, List[float]] = {}
        self.error_counts: Dict[str, int] = {}
        self.negative_balances = 0

    def record(self, name: str, response_time: float, success: bool):
        self.response_times.setdefault(name, []).append(response_time)
        self.error_counts.setdefault(name, 0)
        if not success:
            self.error_counts[name] += 1

    def get_summary(self) -> Dict:
        summary = {}
        for name, times in self.response_times.items():
            times = sorted(times)
            count = len(times)
            if count == 0:
                continue
            p95_idx = min(int(count * 0.95), count - 1)
            summary[name] = {
                "count": count,
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / count * 100,
                "avg_ms": sum(times) / count,
                "p95_ms": times[p95_idx],
            }
        return summary


metrics = MetricsCollector()

# Product ids created by any user during this run
SEEDED_PRODUCTS: List[int] = []


def _timed(user, method: str, path: str, name: str, ok_statuses=(200,), **kwargs):
    start = time.time()
    response = user.client.request(method, path, name=name, **kwargs)
    metrics.record(name, (time.time() - start) * 1000, response.status_code in ok_statuses)
    return response


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class LedgerUser(HttpUser):
    """Base user that makes sure at least one stocked product exists."""

    wait_time = between(0.5, 2)
    abstract = True

    def on_start(self):
        if len(SEEDED_PRODUCTS) >= 5:
            return
        response = _timed(
            self, "POST", "/api/products", "products/create", ok_statuses=(201,),
            json={
                "sku": f"LOAD-{uuid.uuid4().hex[:8]}",
                "name": "Load Test Whey",
                "category": random.choice(["Proteins", "Supplements"]),
                "sale_price_cents": 2000,
                "cost_price_cents": 1200,
                "min_stock": 5,
                "max_stock": 200,
                "initial_stock": 100,
            },
        )
        if response.status_code == 201:
            SEEDED_PRODUCTS.append(response.json()["id"])

    def pick_product(self):
        return random.choice(SEEDED_PRODUCTS) if SEEDED_PRODUCTS else None


class CashierUser(LedgerUser):
    """Records sales; contention on the same few products is the point."""

    weight = 3

    @task(5)
    def record_sale(self):
        product_id = self.pick_product()
        if product_id is None:
            return
        _timed(
            self, "POST", "/api/sales", "sales/create", ok_statuses=(201, 409),
            json={
                "product_id": product_id,
                "quantity": random.randint(1, 4),
                "unit_price_cents": 2000,
                "discount_pct": random.choice([0, 0, 5, 10]),
            },
        )

    @task(2)
    def list_sales(self):
        _timed(self, "GET", "/api/sales", "sales/list", params={"limit": 20})


class StockUser(LedgerUser):
    """Receives and writes off stock."""

    weight = 2

    @task(3)
    def receive(self):
        product_id = self.pick_product()
        if product_id is None:
            return
        _timed(
            self, "POST", "/api/stock/movements", "stock/ingress", ok_statuses=(201,),
            json={"product_id": product_id, "movement_type": "ingress", "quantity": random.randint(5, 20)},
        )

    @task(1)
    def write_off(self):
        product_id = self.pick_product()
        if product_id is None:
            return
        _timed(
            self, "POST", "/api/stock/movements", "stock/egress", ok_statuses=(201, 409),
            json={"product_id": product_id, "movement_type": "egress", "quantity": random.randint(1, 3),
                  "note": "Load test write-off"},
        )

    @task(4)
    def check_balances(self):
        response = _timed(self, "GET", "/api/stock/balances", "stock/balances")
        if response.status_code == 200:
            metrics.negative_balances += sum(1 for row in response.json() if row["current_stock"] < 0)


class ManagerUser(LedgerUser):
    """Dashboard reads and occasional exports."""

    weight = 1

    @task(4)
    def dashboard(self):
        _timed(self, "GET", "/api/analytics/dashboard", "analytics/dashboard")

    @task(3)
    def sales_by_product(self):
        _timed(self, "GET", "/api/analytics/sales-by-product", "analytics/sales-by-product",
               params={"limit": "all"})

    @task(2)
    def trend(self):
        _timed(self, "GET", "/api/analytics/sales-trend", "analytics/sales-trend", params={"days": 30})

    @task(1)
    def export_inventory(self):
        _timed(self, "POST", "/api/reports/inventory", "reports/export", ok_statuses=(201,))

    @task(1)
    def health(self):
        _timed(self, "GET", "/api/health", "system/health")


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    all_pass = True
    for name, stats in sorted(metrics.get_summary().items()):
        is_write = name.startswith(("sales/create", "stock/ingress", "stock/egress", "products/", "reports/"))
        p95_threshold = 1500 if is_write else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1
        all_pass = all_pass and passed
        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% "
              f"{stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{'PASS' if passed else 'FAIL'}]")

    print("-" * 80)
    if metrics.negative_balances:
        all_pass = False
        print(f"[FAIL] {metrics.negative_balances} negative balance reading(s) observed")

    print("\n[PASS] All endpoints within thresholds" if all_pass else "\n[FAIL] Some checks failed")
    print("=" * 80)
