# fuelhub/services/pricing.py

"""
Расчёт стоимости заказа. Чистые функции от состояния каталога:
предпросмотр (summary) и создание заказа используют один и тот же расчёт.
"""

from dataclasses import dataclass, field

from fuelhub.models.vendor import Product, Vendor


@dataclass
class QuoteLine:
    product_id: int
    product_name: str
    unit: str
    quantity: float
    price_per_unit: float
    total_price: float


@dataclass
class Quote:
    lines: list[QuoteLine] = field(default_factory=list)
    subtotal: float = 0.0
    delivery_fee: float = 0.0
    total: float = 0.0
    minimum_order: float = 0.0

    @property
    def meets_minimum(self) -> bool:
        return self.subtotal >= self.minimum_order


def merge_items(items) -> list[tuple[int, float]]:
    """Складывает количества одинаковых товаров, сохраняя порядок первого появления."""
    merged: dict[int, float] = {}
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0.0) + float(item.quantity)
    return list(merged.items())


def check_quantity(product: Product, quantity: float) -> str | None:
    """Сообщение об ошибке, если количество недопустимо, иначе None."""
    if quantity < product.min_order_qty:
        return f"Minimum order quantity for {product.name} is {product.min_order_qty} {product.unit}"
    if quantity > product.max_order_qty:
        return f"Maximum order quantity for {product.name} is {product.max_order_qty} {product.unit}"
    if quantity > product.available_qty:
        return f"Insufficient stock for {product.name}. Available: {product.available_qty} {product.unit}"
    return None


def price_order(vendor: Vendor, products: dict[int, Product], items: list[tuple[int, float]]) -> Quote:
    """
    subtotal = sum(quantity * price_per_unit), total = subtotal + delivery_fee.
    products должен содержать все product_id из items.
    """
    quote = Quote(delivery_fee=round(vendor.delivery_fee, 2), minimum_order=vendor.minimum_order)
    for product_id, quantity in items:
        product = products[product_id]
        quote.lines.append(QuoteLine(
            product_id=product.id,
            product_name=product.name,
            unit=product.unit,
            quantity=quantity,
            price_per_unit=product.price_per_unit,
            total_price=round(quantity * product.price_per_unit, 2),
        ))
    quote.subtotal = round(sum(line.total_price for line in quote.lines), 2)
    quote.total = round(quote.subtotal + quote.delivery_fee, 2)
    return quote
