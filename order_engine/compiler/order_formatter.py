from decimal import Decimal
from typing import List

from ..models.order import Order, OrderPage, OrderStats


def format_price(amount: Decimal, currency: str = "PKR") -> str:
    """`PKR 1,234.5` style: thousands separators, at most two decimals."""
    text = f"{amount:,.2f}".rstrip("0").rstrip(".")
    return f"{currency} {text}"


class OrderFormatter:
    def render_order(self, order: Order) -> str:
        output = []
        output.append(f"Order {order.order_number} ({order.id})")
        output.append(f"  Date:        {order.order_date:%Y-%m-%d %H:%M}")
        customer = f"{order.customer_name} <{order.customer_email}>"
        if order.guest_order:
            customer += " [guest]"
        output.append(f"  Customer:    {customer}")
        output.append(f"  Section:     {order.section.value}")
        output.append(f"  Payment:     {order.payment_status.value}")
        output.append(f"  Fulfillment: {order.fulfillment_status.value}")
        if order.deleted_at:
            output.append(f"  Deleted:     {order.deleted_at:%Y-%m-%d %H:%M}")
        output.append("  Items:")
        for item in order.items:
            output.append(
                f"    {item.quantity} x {item.product_name} [{item.sku}] @ "
                f"{format_price(item.unit_price, order.currency)} = {format_price(item.line_total, order.currency)}"
            )
        output.append(f"  Subtotal:    {format_price(order.subtotal, order.currency)}")
        if order.discount:
            output.append(f"  Discount:    -{format_price(order.discount, order.currency)}")
        output.append(f"  Tax:         {format_price(order.tax, order.currency)}")
        output.append(f"  Shipping:    {format_price(order.shipping_cost, order.currency)}")
        output.append(f"  Total:       {format_price(order.total, order.currency)}")
        if order.shipping_address:
            a = order.shipping_address
            output.append(f"  Ship to:     {a.full_name}, {a.address}, {a.city}, {a.state} {a.postal_code}, {a.country}")
        if order.tags:
            output.append(f"  Tags:        {', '.join(order.tags)}")
        if order.notes:
            output.append(f"  Notes:       {order.notes}")
        return "\n".join(output)

    def render_page(self, page: OrderPage) -> str:
        p = page.pagination
        lines: List[str] = [f"Page {p.page}/{max(p.total_pages, 1)} - {p.total_orders} order(s)"]
        for order in page.orders:
            lines.append(
                f"  {order.order_number:<8} {order.order_date:%Y-%m-%d}  {order.customer_name:<24.24} "
                f"{order.section.value:<8} {order.payment_status.value:<9} {order.fulfillment_status.value:<12} "
                f"{format_price(order.total, order.currency)}"
            )
        return "\n".join(lines)

    def render_stats(self, stats: OrderStats, currency: str = "PKR") -> str:
        o = stats.overview
        lines = [
            f"Orders:  {o.total_orders}",
            f"Revenue: {format_price(o.total_revenue, currency)}",
            f"Average: {format_price(o.average_order_value, currency)}",
            "Payment status:",
        ]
        lines.extend(f"  {status.value:<12} {count}" for status, count in stats.payment_status.items())
        lines.append("Fulfillment status:")
        lines.extend(f"  {status.value:<12} {count}" for status, count in stats.fulfillment_status.items())
        lines.append("By section:")
        for section, entry in stats.by_section.items():
            lines.append(f"  {section.value:<12} {entry.orders:<6} {format_price(entry.revenue, currency)}")
        return "\n".join(lines)
