import argparse
import json
import logging
import sys

from tqdm import tqdm

from ..compiler.order_formatter import OrderFormatter, format_price
from ..config import EngineConfig
from ..errors import OrderEngineError
from ..models.order import FulfillmentStatus, PaymentStatus, Section
from ..server.simple_server import start_server
from ..services.guest_orders import GuestOrderService
from ..services.order_service import OrderService


def _load_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Order Engine CLI")
    parser.add_argument("--root", default=None, help="Root directory of the store (containing .order_engine)")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command")

    # init command
    subparsers.add_parser("init", help="Initialize the order store")

    # catalog / customer seeding
    product_parser = subparsers.add_parser("add-product", help="Add a product to the catalog")
    product_parser.add_argument("sku")
    product_parser.add_argument("name")
    product_parser.add_argument("price")
    product_parser.add_argument("--stock", type=int, default=0, help="Units in stock")
    product_parser.add_argument("--section", choices=[s.value for s in Section], default=Section.CAFE.value)
    product_parser.add_argument("--author", help="Author (books only)")

    customer_parser = subparsers.add_parser("add-customer", help="Register a customer account")
    customer_parser.add_argument("email")
    customer_parser.add_argument("name")
    customer_parser.add_argument("--phone")

    # order creation
    create_parser = subparsers.add_parser("create", help="Create an order from a JSON request file")
    create_parser.add_argument("file", help="Path to a JSON order request")

    import_parser = subparsers.add_parser("import", help="Create orders from a JSON file holding a list of requests")
    import_parser.add_argument("file", help="Path to a JSON list of order requests")

    # reads
    get_parser = subparsers.add_parser("get", help="Show one order")
    get_parser.add_argument("id", nargs="?", help="Order ID")
    get_parser.add_argument("--number", help="Order number, e.g. #1001")

    list_parser = subparsers.add_parser("list", help="List orders")
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--limit", type=int)
    list_parser.add_argument("--search")
    list_parser.add_argument("--section", choices=[s.value for s in Section])
    list_parser.add_argument("--payment-status", choices=[s.value for s in PaymentStatus])
    list_parser.add_argument("--fulfillment-status", choices=[s.value for s in FulfillmentStatus])
    list_parser.add_argument("--customer-id")
    list_parser.add_argument("--sort-by", default="order_date")
    list_parser.add_argument("--sort-order", choices=["asc", "desc"], default="desc")
    list_parser.add_argument("--date-from")
    list_parser.add_argument("--date-to")

    # lifecycle
    payment_parser = subparsers.add_parser("payment-status", help="Change an order's payment status")
    payment_parser.add_argument("id")
    payment_parser.add_argument("status")

    fulfillment_parser = subparsers.add_parser("fulfillment-status", help="Change an order's fulfillment status")
    fulfillment_parser.add_argument("id")
    fulfillment_parser.add_argument("status")

    delete_parser = subparsers.add_parser("delete", help="Delete an order (soft by default)")
    delete_parser.add_argument("id")
    delete_parser.add_argument("--hard", action="store_true", help="Remove the order permanently")

    duplicate_parser = subparsers.add_parser("duplicate", help="Re-order an existing order at current prices")
    duplicate_parser.add_argument("id")

    # reporting
    stats_parser = subparsers.add_parser("stats", help="Show order statistics")
    stats_parser.add_argument("--section", choices=[s.value for s in Section])
    stats_parser.add_argument("--date-from")
    stats_parser.add_argument("--date-to")

    export_parser = subparsers.add_parser("export", help="Export orders as CSV")
    export_parser.add_argument("--output", help="Output file path (default: stdout)")
    export_parser.add_argument("--section", choices=[s.value for s in Section])
    export_parser.add_argument("--payment-status", choices=[s.value for s in PaymentStatus])
    export_parser.add_argument("--fulfillment-status", choices=[s.value for s in FulfillmentStatus])

    # guest orders
    lookup_parser = subparsers.add_parser("lookup", help="Look up a guest order by e-mail and order number")
    lookup_parser.add_argument("email")
    lookup_parser.add_argument("order_number")

    link_parser = subparsers.add_parser("link-guest-orders", help="Attach guest orders to a customer account")
    link_parser.add_argument("customer_id")
    link_parser.add_argument("email")

    check_parser = subparsers.add_parser("check-email", help="Count unclaimed guest orders for an e-mail")
    check_parser.add_argument("email")

    # serve command (HTTP)
    serve_parser = subparsers.add_parser("serve", help="Start the JSON HTTP API")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind (default: 8000)")

    return parser


def _filters(args, *names) -> dict:
    return {name: getattr(args, name) for name in names if getattr(args, name, None) is not None}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    config = EngineConfig.from_env(root_dir=args.root)
    service = OrderService.from_config(config)
    formatter = OrderFormatter()

    try:
        return _run(args, config, service, formatter)
    except OrderEngineError as exc:
        print(f"Error [{exc.code}]: {exc.message}", file=sys.stderr)
        if exc.details:
            print(json.dumps(exc.details, indent=2, default=str), file=sys.stderr)
        return 1


def _run(args, config: EngineConfig, service: OrderService, formatter: OrderFormatter) -> int:
    if args.command == "init":
        print(f"Initialized order store at {service.store.db_path}")

    elif args.command == "add-product":
        product = service.catalog.add_product(
            args.sku, args.price, args.stock, Section(args.section), args.name, author=args.author
        )
        print(f"Added product {product.id} ({product.sku}) at {format_price(product.price, config.currency)}")

    elif args.command == "add-customer":
        customer = service.customers.add_customer(args.email, args.name, phone=args.phone)
        print(f"Added customer {customer.id} <{customer.email}>")

    elif args.command == "create":
        order = service.create_order(_load_json(args.file), created_by="cli")
        print(formatter.render_order(order))

    elif args.command == "import":
        requests = _load_json(args.file)
        if not isinstance(requests, list):
            print("Import file must contain a JSON list of order requests", file=sys.stderr)
            return 1

        created, failed = 0, 0
        for index, request in enumerate(tqdm(requests, desc="Importing", unit="order")):
            try:
                service.create_order(request, created_by="cli-import")
                created += 1
            except OrderEngineError as exc:
                failed += 1
                tqdm.write(f"Request {index} rejected: {exc.message}")
        print(f"Imported {created} orders ({failed} rejected).")
        return 1 if failed else 0

    elif args.command == "get":
        if args.number:
            order = service.get_order_by_number(args.number)
        elif args.id:
            order = service.get_order(args.id)
        else:
            print("Provide an order ID or --number", file=sys.stderr)
            return 1
        print(formatter.render_order(order))

    elif args.command == "list":
        query = _filters(args, "page", "limit", "search", "section", "payment_status", "fulfillment_status",
                         "customer_id", "sort_by", "sort_order", "date_from", "date_to")
        print(formatter.render_page(service.list_orders(query)))

    elif args.command == "payment-status":
        order = service.update_payment_status(args.id, args.status)
        print(f"Order {order.order_number} payment status: {order.payment_status.value}")

    elif args.command == "fulfillment-status":
        order = service.update_fulfillment_status(args.id, args.status)
        print(f"Order {order.order_number} fulfillment status: {order.fulfillment_status.value}")

    elif args.command == "delete":
        service.delete_order(args.id, hard=args.hard)
        print(f"Order {args.id} {'permanently deleted' if args.hard else 'deleted'}")

    elif args.command == "duplicate":
        order = service.duplicate_order(args.id, created_by="cli")
        print(formatter.render_order(order))

    elif args.command == "stats":
        stats = service.get_order_stats(_filters(args, "section", "date_from", "date_to"))
        print(formatter.render_stats(stats, config.currency))

    elif args.command == "export":
        csv_text = service.export_orders_csv(_filters(args, "section", "payment_status", "fulfillment_status"))
        if args.output:
            with open(args.output, "w", encoding="utf-8", newline="") as f:
                f.write(csv_text)
            print(f"Orders exported to {args.output}")
        else:
            print(csv_text, end="")

    elif args.command == "lookup":
        guest_service = GuestOrderService(service.store, service.customers)
        result = guest_service.lookup_guest_order(args.email, args.order_number)
        if result is None:
            print(f"No order {args.order_number} found for {args.email}")
            return 1
        print(json.dumps(result, indent=2, default=str))

    elif args.command == "link-guest-orders":
        guest_service = GuestOrderService(service.store, service.customers)
        linked = guest_service.link_guest_orders(args.customer_id, args.email)
        print(f"Linked {linked} guest orders to customer {args.customer_id}")

    elif args.command == "check-email":
        guest_service = GuestOrderService(service.store, service.customers)
        print(f"{guest_service.guest_order_count(args.email)} guest order(s) for {args.email}")

    elif args.command == "serve":
        start_server(service, port=args.port)

    return 0


if __name__ == "__main__":
    sys.exit(main())
