from decimal import Decimal

from mmart.main import seed_initial_admin
from mmart.models import AdminUser, UserVoucher, Voucher

from tests.conftest import PASSWORD


def test_admin_login(client, admin):
    ok = client.post("/admin/login", json={"username": "admin", "password": PASSWORD})
    bad = client.post("/admin/login", json={"username": "admin", "password": "wrong"})

    assert ok.status_code == 200
    assert ok.json()["token_type"] == "bearer"
    assert bad.status_code == 401


def test_admin_login_records_last_login(client, db, admin):
    assert admin.last_login_at is None

    client.post("/admin/login", json={"username": "admin", "password": PASSWORD})

    db.refresh(admin)
    assert admin.last_login_at is not None


def test_disabled_admin(client, db, admin, admin_headers):
    admin.is_active = False
    db.commit()

    login = client.post("/admin/login", json={"username": "admin", "password": PASSWORD})
    listing = client.get("/admin/vouchers", headers=admin_headers)

    assert login.status_code == 403
    assert listing.status_code == 403


def test_requires_admin_token(client, user_headers):
    assert client.get("/admin/vouchers").status_code == 401
    assert client.get("/admin/vouchers", headers=user_headers).status_code == 403


def test_categories_and_products(client, admin_headers):
    category = client.post("/admin/categories", json={"name": "Drinks"}, headers=admin_headers)
    assert category.status_code == 201
    category_id = category.json()["id"]

    again = client.post("/admin/categories", json={"name": "Drinks"}, headers=admin_headers)
    assert again.status_code == 400

    product = client.post(
        "/admin/products",
        json={"name": "Malt", "price": "7.50", "category_id": category_id},
        headers=admin_headers,
    )
    assert product.status_code == 201
    assert Decimal(product.json()["price"]) == Decimal("7.50")

    orphan = client.post(
        "/admin/products", json={"name": "Soda", "price": "3", "category_id": "missing"}, headers=admin_headers
    )
    assert orphan.status_code == 404


def test_create_and_list_vouchers(client, admin_headers, catalog):
    resp = client.post(
        "/admin/vouchers",
        json={
            "code": "welcome",
            "type": "fixed",
            "value": "500",
            "min_spend": "2000",
            "product_ids": [catalog.phone.id],
        },
        headers=admin_headers,
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["code"] == "WELCOME"
    assert body["total_usage"] == 0
    assert body["product_ids"] == [catalog.phone.id]

    listed = client.get("/admin/vouchers", headers=admin_headers).json()
    assert [v["code"] for v in listed] == ["WELCOME"]


def test_duplicate_voucher_code(client, admin_headers, make_voucher):
    make_voucher(code="TAKEN")

    resp = client.post("/admin/vouchers", json={"code": "taken", "type": "fixed", "value": "5"}, headers=admin_headers)

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "VOUCHER_CODE_COLLISION"


def test_percentage_over_hundred(client, admin_headers):
    resp = client.post(
        "/admin/vouchers", json={"code": "HUGE", "type": "percentage", "value": "120"}, headers=admin_headers
    )

    assert resp.status_code == 422


def test_bulk_generation(client, db, admin_headers):
    resp = client.post(
        "/admin/vouchers/bulk",
        json={"prefix": "FLASH", "quantity": 25, "code_length": 6, "type": "percentage", "value": "15"},
        headers=admin_headers,
    )

    assert resp.status_code == 201
    codes = resp.json()["codes"]
    assert resp.json()["count"] == 25
    assert len(set(codes)) == 25
    assert all(c.startswith("FLASH") and len(c) == 11 for c in codes)
    assert db.query(Voucher).count() == 25


def test_bulk_quantity_limit(client, admin_headers):
    resp = client.post(
        "/admin/vouchers/bulk",
        json={"quantity": 5000, "type": "fixed", "value": "1"},
        headers=admin_headers,
    )

    assert resp.status_code == 422


def test_schedule_and_assign(client, db, admin_headers, senders, make_order, catalog, user, other_user):
    make_order(user, [(catalog.phone, 1)])

    scheduled = client.post(
        "/admin/vouchers/schedule",
        json={
            "type": "percentage",
            "value": "20",
            "criteria": {"category_ids": [catalog.electronics.id], "send_email": True},
        },
        headers=admin_headers,
    )
    assert scheduled.status_code == 201
    assert scheduled.json()["assigned"] == 1
    voucher_id = scheduled.json()["voucher"]["id"]
    assert [m["address"] for m in senders.email.sent] == [user.email]

    make_order(other_user, [(catalog.phone, 1)])
    rerun = client.post(f"/admin/vouchers/{voucher_id}/assign", headers=admin_headers)
    assert rerun.status_code == 200
    assert rerun.json() == {"voucher_id": voucher_id, "assigned": 1}
    assert db.query(UserVoucher).count() == 2


def test_assign_needs_criteria(client, admin_headers, make_voucher):
    voucher = make_voucher(code="PLAIN")

    resp = client.post(f"/admin/vouchers/{voucher.id}/assign", headers=admin_headers)

    assert resp.status_code == 400


def test_stats_and_reconcile(client, db, admin_headers, make_voucher, catalog, user_headers):
    voucher = make_voucher(code="TRACK", type="fixed", value="5", max_usage_per_user=3)
    cart = [{"product_id": catalog.beans.id, "quantity": 1}]
    for _ in range(2):
        placed = client.post("/orders", json={"items": cart, "voucher_code": "TRACK"}, headers=user_headers)
        assert placed.status_code == 201

    stats = client.get(f"/admin/vouchers/{voucher.id}/stats", headers=admin_headers).json()
    assert stats["total_usage"] == 2
    assert stats["unique_users"] == 1
    assert Decimal(stats["total_discount"]) == Decimal("10")

    db.query(Voucher).filter(Voucher.id == voucher.id).update({Voucher.total_usage: 9})
    db.commit()
    reconciled = client.post(f"/admin/vouchers/{voucher.id}/reconcile", headers=admin_headers)
    assert reconciled.json() == {"voucher_id": voucher.id, "previous_total_usage": 9, "total_usage": 2}


def test_unknown_voucher_id(client, admin_headers):
    assert client.get("/admin/vouchers/missing/stats", headers=admin_headers).status_code == 404


def test_seed_initial_admin_only_once(db):
    assert seed_initial_admin(db, "root", PASSWORD) is True
    assert seed_initial_admin(db, "other", PASSWORD) is False
    assert [a.username for a in db.query(AdminUser)] == ["root"]
