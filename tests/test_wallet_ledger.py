from datetime import datetime
from decimal import Decimal

import pytest

from bniconnect.entities import CAGNOTTE_KEY, PAYMENTS_KEY, USERS_KEY
from bniconnect.errors import NotFoundError, ValidationError
from bniconnect.system_settings import DEFAULT_SETTINGS
from bniconnect.user_repository import UserRepository
from bniconnect.wallet_ledger import WalletLedger, _money, to_cents

from helpers import MemoryDocumentStore, make_user, run


@pytest.fixture
def wallet():
    store = MemoryDocumentStore()
    run(store.write(USERS_KEY, [make_user("u1", compteBancaire="FR76 1234", telephone="06-12")]))
    return WalletLedger(store, UserRepository(store))


def settings(**kw):
    return {**DEFAULT_SETTINGS, **kw}


def set_pending(wallet, amount):
    run(wallet.store.write(CAGNOTTE_KEY, {"u1": {"pending": amount, "randomByDay": {}, "randomByWeek": {}}}))


def test_credit_random_counts_and_credits(wallet, frozen_clock):
    first = run(wallet.credit_random("u1", settings()))
    second = run(wallet.credit_random("u1", settings()))
    assert first["ok"] and second["ok"]
    assert second["pending"] == pytest.approx(0.2)
    assert second["count"] == 2
    assert second["dailyRemaining"] == 8
    assert second["weeklyRemaining"] == 48


def test_skip_consumes_quota_without_credit(wallet, frozen_clock):
    result = run(wallet.consume_quota_only("u1", settings()))
    assert result["ok"] and result["pending"] == 0
    assert run(wallet.daily_count("u1", "2026-03-10")) == 1


def test_daily_limit_rejects_then_resets_next_day(wallet, frozen_clock):
    limits = settings(randomQuestionsPerDay=2)
    run(wallet.credit_random("u1", limits))
    run(wallet.credit_random("u1", limits))
    rejected = run(wallet.credit_random("u1", limits))
    assert rejected == {"ok": False, "reason": "DAILY_LIMIT", "pending": pytest.approx(0.2), "count": 2}

    frozen_clock(datetime(2026, 3, 11, 9, 0))
    assert run(wallet.credit_random("u1", limits))["ok"] is True
    assert run(wallet.daily_count("u1", "2026-03-11")) == 1
    assert run(wallet.daily_count("u1", "2026-03-10")) == 2


def test_weekly_limit(wallet, frozen_clock):
    limits = settings(randomQuestionsPerWeek=1)
    run(wallet.consume_quota_only("u1", limits))
    assert run(wallet.credit_random("u1", limits))["reason"] == "WEEKLY_LIMIT"


def test_weekly_count_resets_next_week(wallet, frozen_clock):
    limits = settings(randomQuestionsPerWeek=2)
    run(wallet.credit_random("u1", limits))
    run(wallet.credit_random("u1", limits))
    assert run(wallet.credit_random("u1", limits))["reason"] == "WEEKLY_LIMIT"

    # 2026-03-10 is W10, 2026-03-17 is W11
    frozen_clock(datetime(2026, 3, 17, 12, 0))
    assert run(wallet.credit_random("u1", limits))["ok"] is True
    assert run(wallet.weekly_count("u1", "2026-W11")) == 1
    assert run(wallet.weekly_count("u1", "2026-W10")) == 2


def test_withdraw_below_minimum_is_rejected(wallet):
    set_pending(wallet, 40)
    with pytest.raises(ValidationError):
        run(wallet.request_withdrawal("u1", settings(minimumWithdrawalAmount=50)))
    assert run(wallet.list_payments())["payments"] == []


def test_withdraw_then_cancel_restores_pending(wallet):
    set_pending(wallet, 60)
    result = run(wallet.request_withdrawal("u1", settings(minimumWithdrawalAmount=50)))
    assert result["pending"] == 0
    assert result["retrait"]["status"] == "PENDING"

    listing = run(wallet.list_payments())
    assert listing["total"] == 60
    [payment] = listing["payments"]
    assert payment["amount"] == 60
    assert payment["status"] == "PENDING"
    assert payment["compteBancaire"] == "761234"

    summary = run(wallet.summary("u1", settings()))
    assert summary["pending"] == 0

    cancelled = run(wallet.cancel_withdrawal(payment["id"]))
    assert cancelled["pending"] == 60
    assert cancelled["user"]["retrait"]["status"] == "IDLE"
    assert run(wallet.list_payments())["payments"] == []


def test_second_withdraw_while_pending_is_rejected(wallet):
    set_pending(wallet, 60)
    run(wallet.request_withdrawal("u1", settings()))
    set_pending(wallet, 80)
    with pytest.raises(ValidationError):
        run(wallet.request_withdrawal("u1", settings()))


def test_validate_moves_amount_to_lifetime_and_is_terminal(wallet):
    set_pending(wallet, 75)
    payment_id = run(wallet.request_withdrawal("u1", settings()))["paymentId"]

    validated = run(wallet.validate_withdrawal(payment_id))
    assert validated["user"]["gagneSurBNI"] == 75
    assert validated["user"]["retrait"]["status"] == "IDLE"

    with pytest.raises(NotFoundError):
        run(wallet.cancel_withdrawal(payment_id))
    assert run(wallet.summary("u1", settings()))["pending"] == 0


def test_credit_questionnaire(wallet):
    set_pending(wallet, 1.5)
    assert run(wallet.credit_questionnaire("u1", 2.25)) == pytest.approx(3.75)
    assert run(wallet.credit_questionnaire("u1", 0)) == pytest.approx(3.75)


def test_unknown_user_cannot_withdraw(wallet):
    with pytest.raises(NotFoundError):
        run(wallet.request_withdrawal("ghost", settings()))


def test_failed_payment_write_leaves_balance_and_status(wallet):
    set_pending(wallet, 60)
    wallet.store.failing.add(PAYMENTS_KEY)
    with pytest.raises(OSError):
        run(wallet.request_withdrawal("u1", settings()))

    assert run(wallet.list_payments())["payments"] == []
    summary = run(wallet.summary("u1", settings()))
    assert summary["pending"] == 60
    assert summary["retrait"]["status"] == "IDLE"

    payment_id = run(wallet.request_withdrawal("u1", settings()))["paymentId"]
    assert run(wallet.cancel_withdrawal(payment_id))["pending"] == 60


def test_failed_user_write_on_cancel_keeps_payment_queued(wallet):
    set_pending(wallet, 60)
    payment_id = run(wallet.request_withdrawal("u1", settings()))["paymentId"]

    wallet.store.failing.add(USERS_KEY)
    with pytest.raises(OSError):
        run(wallet.cancel_withdrawal(payment_id))
    assert [p["id"] for p in run(wallet.list_payments())["payments"]] == [payment_id]
    assert run(wallet.summary("u1", settings()))["pending"] == 0

    assert run(wallet.cancel_withdrawal(payment_id))["pending"] == 60
    with pytest.raises(NotFoundError):
        run(wallet.cancel_withdrawal(payment_id))
    assert run(wallet.summary("u1", settings()))["pending"] == 60


def test_payment_without_id_keeps_a_stable_id(wallet):
    run(wallet.store.write(PAYMENTS_KEY, [{"userId": "u1", "amount": 30, "createdAt": "2026-01-05T10:00:00Z"}]))
    first = run(wallet.list_payments())["payments"][0]["id"]
    assert run(wallet.list_payments())["payments"][0]["id"] == first

    assert run(wallet.cancel_withdrawal(first))["pending"] == 30
    assert run(wallet.list_payments())["payments"] == []


def test_money_is_summed_in_cents():
    assert to_cents("1.005") == Decimal("1.01")
    assert to_cents("abc") == Decimal("0.00")
    assert _money(0.1, 0.2) == 0.3
    assert _money(*([0.1] * 10)) == 1.0
