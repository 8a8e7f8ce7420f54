"""
Shopping cart draft.

The cart lives with the customer until checkout and is never persisted. Its
prices are display snapshots only; checkout re-reads every product.
"""
from typing import Dict, Iterable, List, Optional

from schemas import CartLine


class Cart:
    def __init__(self, lines: Optional[Iterable[CartLine]] = None):
        self._lines: Dict[str, CartLine] = {}
        for line in lines or []:
            self.add(line)

    def add(self, line: CartLine) -> None:
        existing = self._lines.get(line.product_id)
        if existing:
            existing.quantity += line.quantity
        else:
            self._lines[line.product_id] = line.model_copy()

    def update_quantity(self, product_id: str, quantity: int) -> None:
        if product_id not in self._lines:
            return
        if quantity <= 0:
            self.remove(product_id)
        else:
            self._lines[product_id].quantity = quantity

    def remove(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def subtotal(self) -> float:
        return sum(line.price * line.quantity for line in self._lines.values())

    @property
    def count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)
