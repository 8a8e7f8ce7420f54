from cart import Cart
from schemas import CartLine


def milk(quantity=1):
    return CartLine(product_id="p1", name="Milk", price=30, quantity=quantity)


def bread(quantity=1):
    return CartLine(product_id="p2", name="Bread", price=45, quantity=quantity)


def test_adding_same_product_accumulates():
    cart = Cart([milk(1)])
    cart.add(milk(2))

    assert len(cart) == 1
    assert cart.lines[0].quantity == 3
    assert cart.count == 3


def test_subtotal_uses_line_prices():
    cart = Cart([milk(2), bread(1)])
    assert cart.subtotal == 105


def test_quantity_zero_removes_line():
    cart = Cart([milk(2), bread(1)])
    cart.update_quantity("p1", 0)

    assert [line.product_id for line in cart.lines] == ["p2"]


def test_update_unknown_product_is_ignored():
    cart = Cart([milk(2)])
    cart.update_quantity("nope", 4)
    assert cart.count == 2


def test_cart_does_not_alias_caller_lines():
    line = milk(1)
    cart = Cart([line])
    cart.update_quantity("p1", 5)
    assert line.quantity == 1


def test_clear_is_idempotent():
    cart = Cart([milk(), bread()])
    cart.clear()
    cart.clear()
    cart.clear()

    assert cart.is_empty()
    assert cart.subtotal == 0
