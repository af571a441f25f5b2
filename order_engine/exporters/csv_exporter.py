import csv
import io
from typing import List

from ..models.order import Order

CSV_HEADERS = [
    "Order Number",
    "Customer Name",
    "Customer Email",
    "Date",
    "Section",
    "Payment Status",
    "Fulfillment Status",
    "Items Count",
    "Total",
]


class CsvExporter:
    """
    Flattens orders into one CSV row each.
    """

    def export(self, orders: List[Order]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for order in orders:
            writer.writerow([
                order.order_number,
                order.customer_name,
                order.customer_email,
                order.order_date.date().isoformat(),
                order.section.value,
                order.payment_status.value,
                order.fulfillment_status.value,
                order.items_count,
                f"{order.total:.2f}",
            ])
        return buffer.getvalue()
