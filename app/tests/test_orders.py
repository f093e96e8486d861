import pytest

from market import models
from market.database import SessionLocal
from market.exceptions import Forbidden, InvalidState, NotFound, Validation
from market.services import chat, orders


@pytest.fixture
def seller(make_user):
    return make_user("alice")


@pytest.fixture
def buyer(make_user):
    return make_user("bob")


def test_full_order_lifecycle(db, seller, buyer, make_product):
    product = make_product(seller, price=100.0)

    order = orders.create_order(db, buyer.id, product.id)
    assert order.status == models.OrderStatus.PENDING
    assert order.price == 100.0
    assert order.meet_location == "North library"
    assert order.seller_id == seller.id
    assert order.product_title == "Desk lamp"
    assert order.product_image == "https://img.example/lamp-1.jpg"
    assert order.buyer_name == "Bob"

    shipped = orders.ship_order(db, seller.id, order.id)
    assert shipped.status == models.OrderStatus.SHIPPED

    done = orders.confirm_receive(db, buyer.id, order.id)
    assert done.status == models.OrderStatus.DONE

    db.expire_all()
    assert db.get(models.Product, product.id).status == models.ProductStatus.SOLD


def test_price_is_snapshotted(db, seller, buyer, make_product):
    product = make_product(seller, price=100.0)
    order = orders.create_order(db, buyer.id, product.id)

    product = db.get(models.Product, product.id)
    product.price = 250.0
    db.commit()

    assert orders.get_order_detail(db, buyer.id, order.id).price == 100.0


def test_create_order_requires_product_id(db, buyer):
    with pytest.raises(Validation):
        orders.create_order(db, buyer.id, None)


def test_create_order_missing_product(db, buyer):
    with pytest.raises(NotFound):
        orders.create_order(db, buyer.id, 9999)


def test_cannot_buy_own_product(db, seller, make_product):
    product = make_product(seller)
    with pytest.raises(Forbidden):
        orders.create_order(db, seller.id, product.id)
    assert db.query(models.Order).count() == 0


@pytest.mark.parametrize("status", [
    models.ProductStatus.SOLD,
    models.ProductStatus.RESERVED,
    models.ProductStatus.DELETED,
])
def test_cannot_order_unavailable_product(db, seller, buyer, make_product, status):
    product = make_product(seller, status=status)
    with pytest.raises(InvalidState):
        orders.create_order(db, buyer.id, product.id)
    assert db.query(models.Order).count() == 0


def test_only_seller_ships(db, seller, buyer, make_user, make_product):
    other_seller = make_user("carol")
    order = orders.create_order(db, buyer.id, make_product(seller).id)

    with pytest.raises(Forbidden):
        orders.ship_order(db, other_seller.id, order.id)
    with pytest.raises(Forbidden):
        orders.ship_order(db, buyer.id, order.id)


def test_authorization_checked_before_state(db, seller, buyer, make_user, make_product):
    order = orders.create_order(db, buyer.id, make_product(seller).id)
    orders.confirm_receive(db, buyer.id, order.id)

    # a stranger learns nothing about the order being DONE
    with pytest.raises(Forbidden):
        orders.ship_order(db, make_user("mallory").id, order.id)


def test_ship_twice_fails(db, seller, buyer, make_product):
    order = orders.create_order(db, buyer.id, make_product(seller).id)
    orders.ship_order(db, seller.id, order.id)
    with pytest.raises(InvalidState):
        orders.ship_order(db, seller.id, order.id)


def test_done_is_terminal(db, seller, buyer, make_product):
    order = orders.create_order(db, buyer.id, make_product(seller).id)
    orders.confirm_receive(db, buyer.id, order.id)

    with pytest.raises(InvalidState):
        orders.ship_order(db, seller.id, order.id)
    with pytest.raises(InvalidState):
        orders.confirm_receive(db, buyer.id, order.id)


def test_confirm_directly_from_pending(db, seller, buyer, make_product):
    product = make_product(seller)
    order = orders.create_order(db, buyer.id, product.id)

    assert orders.confirm_receive(db, buyer.id, order.id).status == models.OrderStatus.DONE
    db.expire_all()
    assert db.get(models.Product, product.id).status == models.ProductStatus.SOLD


def test_only_buyer_confirms(db, seller, buyer, make_product):
    order = orders.create_order(db, buyer.id, make_product(seller).id)
    with pytest.raises(Forbidden):
        orders.confirm_receive(db, seller.id, order.id)


def test_confirm_keeps_product_sold_once(db, seller, buyer, make_product):
    product = make_product(seller)
    order = orders.create_order(db, buyer.id, product.id)
    orders.confirm_receive(db, buyer.id, order.id)
    first_update = db.get(models.Product, product.id).updated_at

    with pytest.raises(InvalidState):
        orders.confirm_receive(db, buyer.id, order.id)

    db.expire_all()
    product = db.get(models.Product, product.id)
    assert product.status == models.ProductStatus.SOLD
    assert product.updated_at == first_update


def test_second_order_completion_leaves_product_sold(db, seller, buyer, make_user, make_product):
    product = make_product(seller)
    first = orders.create_order(db, buyer.id, product.id)
    second_buyer = make_user("dave")
    second = orders.create_order(db, second_buyer.id, product.id)

    orders.confirm_receive(db, buyer.id, first.id)
    orders.confirm_receive(db, second_buyer.id, second.id)

    db.expire_all()
    assert db.get(models.Product, product.id).status == models.ProductStatus.SOLD


def test_transitions_post_chat_messages(db, seller, buyer, make_product):
    product = make_product(seller)
    order = orders.create_order(db, buyer.id, product.id)
    orders.ship_order(db, seller.id, order.id)
    orders.confirm_receive(db, buyer.id, order.id)

    session = (
        db.query(models.ChatSession)
        .filter_by(buyer_id=buyer.id, seller_id=seller.id, product_id=product.id)
        .one()
    )
    messages = db.query(models.ChatMessage).filter_by(session_id=session.id).order_by(models.ChatMessage.id).all()
    assert [m.sender_id for m in messages] == [buyer.id, seller.id, buyer.id]
    assert [m.content for m in messages] == [
        orders.ORDER_PLACED_MESSAGE,
        orders.ORDER_SHIPPED_MESSAGE,
        orders.ORDER_DONE_MESSAGE,
    ]
    assert session.last_message == orders.ORDER_DONE_MESSAGE


def test_order_messages_reuse_existing_chat(db, seller, buyer, make_product):
    product = make_product(seller)
    started = chat.start_chat(db, buyer.id, product.id)
    orders.create_order(db, buyer.id, product.id)

    assert db.query(models.ChatSession).count() == 1
    assert chat.unread_count(db, started.id, seller.id) == 1


def test_failed_transition_leaves_no_side_effects(db, seller, buyer, make_product):
    order = orders.create_order(db, buyer.id, make_product(seller).id)
    orders.confirm_receive(db, buyer.id, order.id)
    before = db.query(models.ChatMessage).count()

    with pytest.raises(InvalidState):
        orders.ship_order(db, seller.id, order.id)

    assert db.query(models.ChatMessage).count() == before


def test_stale_transition_loses_to_concurrent_update(db, seller, buyer, make_product):
    order = orders.create_order(db, buyer.id, make_product(seller).id)

    other = SessionLocal()
    try:
        stale = other.get(models.Order, order.id)
        assert stale.status == models.OrderStatus.PENDING

        orders.confirm_receive(db, buyer.id, order.id)
        before = db.query(models.ChatMessage).count()

        # stale still reads PENDING, so only the conditional UPDATE can refuse it
        with pytest.raises(InvalidState):
            orders._transition(other, stale, models.OrderStatus.SHIPPED)
    finally:
        other.close()

    db.expire_all()
    assert db.get(models.Order, order.id).status == models.OrderStatus.DONE
    assert db.query(models.ChatMessage).count() == before


def test_list_my_orders_by_role_and_status(db, seller, buyer, make_product):
    first = orders.create_order(db, buyer.id, make_product(seller, title="Kettle").id)
    second = orders.create_order(db, buyer.id, make_product(seller, title="Chair").id)
    orders.ship_order(db, seller.id, second.id)

    bought = orders.list_my_orders(db, buyer.id, "buy", None)
    assert [o.id for o in bought] == [second.id, first.id]

    sold = orders.list_my_orders(db, seller.id, "SELL", "ALL")
    assert [o.id for o in sold] == [second.id, first.id]

    shipped = orders.list_my_orders(db, seller.id, "sell", "shipped")
    assert [o.id for o in shipped] == [second.id]

    assert orders.list_my_orders(db, buyer.id, "SELL", None) == []
    assert orders.list_my_orders(db, buyer.id, None, "CANCELLED") == []


def test_order_detail_visible_to_parties_only(db, seller, buyer, make_user, make_product):
    order = orders.create_order(db, buyer.id, make_product(seller).id)

    assert orders.get_order_detail(db, buyer.id, order.id).id == order.id
    assert orders.get_order_detail(db, seller.id, order.id).id == order.id
    with pytest.raises(Forbidden):
        orders.get_order_detail(db, make_user("eve").id, order.id)
    with pytest.raises(NotFound):
        orders.get_order_detail(db, buyer.id, 4242)


def test_order_api_scenario(client, db, seller, buyer, make_user, make_product, headers_for):
    product = make_product(seller, price=100.0)

    response = client.post("/api/orders", json={"product_id": product.id}, headers=headers_for(buyer))
    assert response.status_code == 200
    order = response.json()
    assert order["status"] == "PENDING"
    assert order["price"] == 100.0

    stranger = make_user("frank")
    response = client.post(f"/api/orders/{order['id']}/ship", headers=headers_for(stranger))
    assert response.status_code == 403
    assert response.json()["detail"]

    response = client.post(f"/api/orders/{order['id']}/ship", headers=headers_for(seller))
    assert response.status_code == 200
    assert response.json()["status"] == "SHIPPED"

    response = client.post(f"/api/orders/{order['id']}/confirm", headers=headers_for(buyer))
    assert response.status_code == 200
    assert response.json()["status"] == "DONE"

    response = client.get(f"/api/products/{product.id}")
    assert response.json()["status"] == "SOLD"

    response = client.post("/api/orders", json={"product_id": product.id}, headers=headers_for(stranger))
    assert response.status_code == 409

    response = client.get("/api/orders/me", params={"role": "SELL", "status": "done"},
                          headers=headers_for(seller))
    assert [o["id"] for o in response.json()] == [order["id"]]


def test_orders_require_authentication(client):
    response = client.post("/api/orders", json={"product_id": 1})
    assert response.status_code == 401
