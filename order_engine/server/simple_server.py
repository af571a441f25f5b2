import http.server
import json
import logging
import re
import urllib.parse
from typing import Optional

from pydantic_core import to_jsonable_python

from ..errors import NotFoundError, OrderEngineError, ValidationError
from ..services.guest_orders import GuestOrderService
from ..services.order_service import OrderService

logger = logging.getLogger(__name__)

# (method, path pattern, handler name); first match wins
ROUTES = [
    ("POST", re.compile(r"^/api/orders/?$"), "create_order"),
    ("GET", re.compile(r"^/api/orders/?$"), "list_orders"),
    ("GET", re.compile(r"^/api/orders/stats/?$"), "order_stats"),
    ("GET", re.compile(r"^/api/orders/export/?$"), "export_orders"),
    ("GET", re.compile(r"^/api/orders/number/(?P<number>[^/]+)/?$"), "get_order_by_number"),
    ("PATCH", re.compile(r"^/api/orders/(?P<order_id>[^/]+)/payment-status/?$"), "update_payment_status"),
    ("PATCH", re.compile(r"^/api/orders/(?P<order_id>[^/]+)/fulfillment-status/?$"), "update_fulfillment_status"),
    ("POST", re.compile(r"^/api/orders/(?P<order_id>[^/]+)/duplicate/?$"), "duplicate_order"),
    ("GET", re.compile(r"^/api/orders/(?P<order_id>[^/]+)/?$"), "get_order"),
    ("PATCH", re.compile(r"^/api/orders/(?P<order_id>[^/]+)/?$"), "update_order"),
    ("DELETE", re.compile(r"^/api/orders/(?P<order_id>[^/]+)/?$"), "delete_order"),
    ("POST", re.compile(r"^/api/guest-orders/lookup/?$"), "lookup_guest_order"),
    ("POST", re.compile(r"^/api/guest-orders/check-email/?$"), "check_guest_email"),
]


class OrderRequestHandler(http.server.BaseHTTPRequestHandler):
    service: Optional[OrderService] = None  # Class variables hold the services
    guest_service: Optional[GuestOrderService] = None

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_PATCH(self):
        self._dispatch("PATCH")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")

    # --- Routing ---

    def _dispatch(self, method: str):
        parsed = urllib.parse.urlparse(self.path)
        self.query = {
            key: values[0]
            for key, values in urllib.parse.parse_qs(parsed.query).items()
            if values and values[0] != ""
        }

        path_matched = False
        for route_method, pattern, name in ROUTES:
            match = pattern.match(parsed.path)
            if not match:
                continue
            path_matched = True
            if route_method != method:
                continue
            try:
                getattr(self, name)(**match.groupdict())
            except OrderEngineError as exc:
                self._send_json(exc.status_code, exc.to_dict())
            except Exception:
                logger.exception(f"Unhandled error on {method} {parsed.path}")
                self._send_json(500, {"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}})
            return

        if path_matched:
            self._send_json(405, {"error": {"code": "METHOD_NOT_ALLOWED", "message": f"{method} not allowed"}})
        else:
            self._send_json(404, {"error": {"code": "NOT_FOUND", "message": f"No route for {parsed.path}"}})

    def _read_json(self) -> dict:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError as exc:
            raise ValidationError("Invalid Content-Length header") from exc
        if length < 0:
            raise ValidationError("Invalid Content-Length header")
        raw = self.rfile.read(length) if length else b""
        if not raw:
            return {}
        try:
            body = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError("Request body must be valid JSON") from exc
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    def _send_json(self, status: int, payload):
        data = json.dumps(to_jsonable_python(payload)).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _send_order(self, status: int, order):
        self._send_json(status, order.model_dump(mode="json"))

    # --- Orders ---

    def create_order(self):
        order = self.service.create_order(self._read_json(), created_by=self.headers.get("X-User-Id"))
        self._send_order(201, order)

    def list_orders(self):
        page = self.service.list_orders(self.query)
        self._send_json(200, page.model_dump(mode="json"))

    def order_stats(self):
        stats = self.service.get_order_stats(self.query)
        self._send_json(200, stats.model_dump(mode="json"))

    def export_orders(self):
        data = self.service.export_orders_csv(self.query).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-type", "text/csv; charset=utf-8")
        self.send_header("Content-Disposition", 'attachment; filename="orders.csv"')
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def get_order_by_number(self, number: str):
        self._send_order(200, self.service.get_order_by_number(urllib.parse.unquote(number)))

    def get_order(self, order_id: str):
        self._send_order(200, self.service.get_order(order_id))

    def update_order(self, order_id: str):
        self._send_order(200, self.service.update_order(order_id, self._read_json()))

    def update_payment_status(self, order_id: str):
        body = self._read_json()
        status = body.get("payment_status", body.get("status"))
        if status is None:
            raise ValidationError("payment_status is required")
        self._send_order(200, self.service.update_payment_status(order_id, status))

    def update_fulfillment_status(self, order_id: str):
        body = self._read_json()
        status = body.get("fulfillment_status", body.get("status"))
        if status is None:
            raise ValidationError("fulfillment_status is required")
        self._send_order(200, self.service.update_fulfillment_status(order_id, status))

    def duplicate_order(self, order_id: str):
        order = self.service.duplicate_order(order_id, created_by=self.headers.get("X-User-Id"))
        self._send_order(201, order)

    def delete_order(self, order_id: str):
        """
        `?hard=true` purges the order for good. That is a privileged operation:
        this server does no authentication, so whatever fronts it must only let
        trusted callers through with the flag set.
        """
        hard = self.query.get("hard", "").lower() in ("1", "true", "yes")
        self.service.delete_order(order_id, hard=hard)
        self._send_json(200, {"id": order_id, "deleted": True, "hard": hard})

    # --- Guest orders ---

    def lookup_guest_order(self):
        body = self._read_json()
        result = self.guest_service.lookup_guest_order(body.get("email") or "", body.get("order_number") or "")
        if result is None:
            raise NotFoundError("Order")
        self._send_json(200, result)

    def check_guest_email(self):
        count = self.guest_service.guest_order_count(self._read_json().get("email") or "")
        self._send_json(200, {
            "has_guest_orders": count > 0,
            "guest_order_count": count,
            "message": f"You have {count} previous order(s). Create an account to track all your orders!"
            if count else None,
        })


def make_server(service: OrderService, host: str = "", port: int = 8000,
                guest_service: Optional[GuestOrderService] = None) -> http.server.ThreadingHTTPServer:
    """Binds a threaded server without starting it. Port 0 picks a free port."""
    handler = type("BoundOrderRequestHandler", (OrderRequestHandler,), {
        "service": service,
        "guest_service": guest_service or GuestOrderService(service.store, service.customers),
    })
    return http.server.ThreadingHTTPServer((host, port), handler)


def start_server(service: OrderService, port: int = 8000, host: str = ""):
    try:
        with make_server(service, host=host, port=port) as httpd:
            print(f"Serving order API at http://localhost:{httpd.server_address[1]}/api/orders")
            print("Press Ctrl+C to stop.")
            httpd.serve_forever()
    except KeyboardInterrupt:
        print("\nServer stopped.")
