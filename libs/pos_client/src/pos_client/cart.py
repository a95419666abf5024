from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    unit_price: Decimal
    name: str = ""

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Cart:
    """Immutable, ordered cart value. Every change returns a new cart."""

    lines: tuple[CartLine, ...] = ()

    def __len__(self) -> int:
        return len(self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total(self) -> Decimal:
        return sum((line.total for line in self.lines), Decimal("0"))

    def add(self, product_id: int, quantity: int, unit_price: Decimal, name: str = "") -> Cart:
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        for index, line in enumerate(self.lines):
            if line.product_id == product_id:
                merged = replace(line, quantity=line.quantity + quantity)
                return Cart(self.lines[:index] + (merged,) + self.lines[index + 1:])
        return Cart(self.lines + (CartLine(product_id, quantity, Decimal(str(unit_price)), name),))

    def set_quantity(self, product_id: int, quantity: int) -> Cart:
        if quantity <= 0:
            return self.remove(product_id)
        return Cart(
            tuple(replace(line, quantity=quantity) if line.product_id == product_id else line for line in self.lines)
        )

    def remove(self, product_id: int) -> Cart:
        return Cart(tuple(line for line in self.lines if line.product_id != product_id))

    def as_request_items(self) -> list[dict]:
        return [
            {"product_id": line.product_id, "quantity": line.quantity, "unit_price": str(line.unit_price)}
            for line in self.lines
        ]
