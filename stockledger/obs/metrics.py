# stockledger/obs/metrics.py
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# inventory core
inventory_operations_total = Counter(
    "inventory_operations_total", "Successful inventory operations", ["op"]
)
inventory_shortage_total = Counter(
    "inventory_shortage_total", "Operations rejected for insufficient quantity", ["op"]
)
cas_conflicts_total = Counter(
    "cas_conflicts_total", "Compare-and-apply version conflicts", ["resource"]
)
reconcile_drift_total = Counter(
    "reconcile_drift_total", "Items whose stored quantity disagreed with the batch sum"
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        http_requests_total.labels(request.method, path, str(response.status_code)).inc()
        http_request_duration.labels(request.method, path).observe(elapsed)
        return response
