"""Targeted voucher assignment from purchase-history criteria."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from mmart.models import UserVoucher, Voucher
from mmart.schemas.voucher import VoucherSchedule
from mmart.services.voucher_assignment import (
    VoucherNotifier,
    assign_to_qualifying_users,
    process_assignments,
    schedule_distribution,
    voucher_notification,
)


def holders(db, voucher):
    return {a.user_id for a in db.query(UserVoucher).filter(UserVoucher.voucher_id == voucher.id)}


def targeted(make_voucher, code="LOYAL", **criteria):
    return make_voucher(code=code, qualification_type="targeted", criteria=criteria)


class TestAssignToQualifyingUsers:
    def test_min_orders(self, db, make_voucher, make_order, catalog, user, other_user):
        make_order(user, [(catalog.rice, 1)])
        make_order(user, [(catalog.beans, 1)])
        make_order(other_user, [(catalog.rice, 1)])
        voucher = targeted(make_voucher, min_orders=2)

        assert assign_to_qualifying_users(db, voucher) == 1
        assert holders(db, voucher) == {user.id}

    def test_min_spend_within_time_period(self, db, make_voucher, make_order, catalog, user, other_user):
        make_order(user, [(catalog.phone, 2)])
        make_order(other_user, [(catalog.beans, 1)])
        voucher = targeted(make_voucher, min_spend="300", time_period=30)

        assert assign_to_qualifying_users(db, voucher) == 1
        assert holders(db, voucher) == {user.id}

    def test_old_orders_do_not_count_towards_spend(self, db, make_voucher, make_order, catalog, user):
        make_order(user, [(catalog.phone, 5)], created_at=datetime.now(timezone.utc) - timedelta(days=90))
        voucher = targeted(make_voucher, min_spend="300", time_period=30)

        assert assign_to_qualifying_users(db, voucher) == 0

    def test_bought_product(self, db, make_voucher, make_order, catalog, user, other_user):
        make_order(user, [(catalog.phone, 1)])
        make_order(other_user, [(catalog.rice, 1)])
        voucher = targeted(make_voucher, product_ids=[catalog.phone.id])

        assert assign_to_qualifying_users(db, voucher) == 1
        assert holders(db, voucher) == {user.id}

    def test_bought_from_category(self, db, make_voucher, make_order, catalog, user, other_user):
        make_order(user, [(catalog.phone, 1)])
        make_order(other_user, [(catalog.beans, 1)])
        voucher = targeted(make_voucher, category_ids=[catalog.groceries.id])

        assert assign_to_qualifying_users(db, voucher) == 1
        assert holders(db, voucher) == {other_user.id}

    def test_recent_registration(self, db, make_voucher, make_user):
        newcomer = make_user(email="new@example.com")
        make_user(email="old@example.com", created_at=datetime.now(timezone.utc) - timedelta(days=60))
        voucher = targeted(make_voucher, registration_days=7)

        assert assign_to_qualifying_users(db, voucher) == 1
        assert holders(db, voucher) == {newcomer.id}

    def test_all_criteria_must_hold(self, db, make_voucher, make_order, catalog, user, other_user):
        make_order(user, [(catalog.phone, 1)])
        make_order(user, [(catalog.phone, 1)])
        make_order(other_user, [(catalog.rice, 1)])
        make_order(other_user, [(catalog.rice, 1)])
        voucher = targeted(make_voucher, min_orders=2, category_ids=[catalog.electronics.id])

        assert holders(db, voucher) == set()
        assert assign_to_qualifying_users(db, voucher) == 1
        assert holders(db, voucher) == {user.id}

    def test_second_run_assigns_nobody_twice(self, db, make_voucher, make_order, catalog, user):
        make_order(user, [(catalog.rice, 1)])
        voucher = targeted(make_voucher, min_orders=1)

        assert assign_to_qualifying_users(db, voucher) == 1
        assert assign_to_qualifying_users(db, voucher) == 0
        assert db.query(UserVoucher).count() == 1

    def test_no_criteria_assigns_nothing(self, db, make_voucher, user):
        voucher = make_voucher(code="PLAIN", qualification_type="targeted")

        assert assign_to_qualifying_users(db, voucher) == 0

    def test_emails_new_holders_when_asked(self, db, make_voucher, make_order, catalog, senders, user):
        make_order(user, [(catalog.rice, 1)])
        voucher = targeted(make_voucher, min_orders=1, send_email=True)

        assign_to_qualifying_users(db, voucher, VoucherNotifier(senders.email))

        assert len(senders.email.sent) == 1
        mail = senders.email.sent[0]
        assert mail["address"] == user.email
        assert "10% off" in mail["subject"]
        assert voucher.code in mail["html"]

    def test_no_email_unless_asked(self, db, make_voucher, make_order, catalog, senders, user):
        make_order(user, [(catalog.rice, 1)])
        voucher = targeted(make_voucher, min_orders=1)

        assign_to_qualifying_users(db, voucher, VoucherNotifier(senders.email))

        assert senders.email.sent == []


class TestVoucherNotification:
    def test_fixed_amount_with_min_spend(self, make_voucher, user):
        voucher = make_voucher(code="BIG500", type="fixed", value="500", min_spend="5000")

        subject, text, html = voucher_notification(user, voucher)

        assert subject == "You've Received a Special Voucher - ₦500.00 off!"
        assert "on orders above ₦5,000.00" in text
        assert "BIG500" in html
        assert "No expiry" in html

    def test_percentage_without_min_spend(self, make_voucher, user):
        voucher = make_voucher(code="TWELVE", value="12.50")

        subject, text, _ = voucher_notification(user, voucher)

        assert "12.5% off" in subject
        assert "orders above" not in text


class TestScheduleAndProcess:
    def test_schedule_creates_targeted_voucher_and_assigns(self, db, make_order, catalog, user):
        make_order(user, [(catalog.rice, 1)])
        payload = VoucherSchedule(type="fixed", value=Decimal("20"), criteria={"min_orders": 1})

        voucher, assigned = schedule_distribution(db, payload)

        assert voucher.code.startswith("VCH")
        assert voucher.qualification_type == "targeted"
        assert voucher.criteria["min_orders"] == 1
        assert assigned == 1

    def test_schedule_can_defer_assignment(self, db, make_order, catalog, user):
        make_order(user, [(catalog.rice, 1)])
        payload = VoucherSchedule(code="later", type="fixed", value=Decimal("20"), criteria={"min_orders": 1}, assign_now=False)

        voucher, assigned = schedule_distribution(db, payload)

        assert voucher.code == "LATER"
        assert assigned == 0
        assert holders(db, voucher) == set()

    def test_process_skips_inactive_and_expired(self, db, make_voucher, make_order, catalog, user):
        make_order(user, [(catalog.rice, 1)])
        live = targeted(make_voucher, code="LIVE", min_orders=1)
        off = make_voucher(code="OFF", qualification_type="targeted", criteria={"min_orders": 1}, is_active=False)
        old = make_voucher(
            code="OLD",
            qualification_type="targeted",
            criteria={"min_orders": 1},
            expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        )
        make_voucher(code="AUTO", qualification_type="automatic", criteria={"min_orders": 1})

        assert process_assignments(db) == 1
        assert holders(db, live) == {user.id}
        assert holders(db, off) == set()
        assert holders(db, old) == set()
        assert db.query(Voucher).count() == 4
