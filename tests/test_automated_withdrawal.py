# tests/test_automated_withdrawal.py

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from tonescrow.core.exceptions import (
    AlreadyProcessed,
    ConfigurationMissing,
    CustodyBalanceInsufficient,
    DecryptionError,
    DefiniteTransferFailure,
    InsufficientFunds,
    InvalidTransition,
    UncertainExternalOutcome,
    ValidationError,
)
from tonescrow.crud import profile as crud_profile
from tonescrow.models.referral import ReferralEarning
from tonescrow.models.withdrawal import WithdrawalStatus as W
from tonescrow.services import custody as custody_service
from tonescrow.services import secret_store
from tonescrow.services import settings as settings_service
from tonescrow.services import withdrawal as withdrawal_service
from tonescrow.services.custody import TonCustodyWallet
from tonescrow.services.settings import MNEMONIC_KEY

TON_ADDRESS = "UQ" + "A" * 46
MNEMONIC = " ".join(["abandon"] * 23 + ["art"])


def balance(db, profile) -> Decimal:
    return crud_profile.get_balance(db, profile.id, "TON")


async def test_automated_payout_completes(db_session, make_profile, make_withdrawal, link_referral, fake_custody, escrow_settings):
    referrer = make_profile()
    profile = make_profile(balance="25")
    link_referral(referrer, profile)
    withdrawal = make_withdrawal(profile, amount="10", fee="0.3")

    completed = await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    assert completed.status == W.COMPLETED
    assert completed.tx_reference == "tx-hash-1"
    assert completed.needs_review is False
    assert balance(db_session, profile) == Decimal("15")
    assert balance(db_session, referrer) == Decimal("0.5")

    # Отправляется payout, а не полная сумма заявки
    destination, amount = fake_custody.transfer.await_args.args[:2]
    assert destination == TON_ADDRESS
    assert amount == Decimal("9.7")


async def test_custody_balance_too_low_leaves_request_pending(db_session, make_profile, make_withdrawal, fake_custody, escrow_settings):
    profile = make_profile(balance="25")
    withdrawal = make_withdrawal(profile, amount="10", fee="0.3")
    fake_custody.get_balance.return_value = Decimal("5")

    with pytest.raises(CustodyBalanceInsufficient) as exc_info:
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    # 9.7 payout + 0.05 резерв на комиссию сети
    assert exc_info.value.required == Decimal("9.75")
    assert exc_info.value.available == Decimal("5")
    fake_custody.transfer.assert_not_awaited()

    db_session.refresh(withdrawal)
    assert withdrawal.status == W.PENDING
    assert "insufficient custody balance" in withdrawal.admin_notes
    assert balance(db_session, profile) == Decimal("25")


async def test_user_balance_too_low_is_not_sent(db_session, make_profile, make_withdrawal, fake_custody, escrow_settings):
    profile = make_profile(balance="3")
    withdrawal = make_withdrawal(profile, amount="10")

    with pytest.raises(InsufficientFunds):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    fake_custody.transfer.assert_not_awaited()
    db_session.refresh(withdrawal)
    assert withdrawal.status == W.PENDING
    assert balance(db_session, profile) == Decimal("3")


async def test_definite_failure_refunds_and_reverts(db_session, make_profile, make_withdrawal, link_referral, fake_custody, escrow_settings):
    referrer = make_profile()
    profile = make_profile(balance="25")
    link_referral(referrer, profile)
    withdrawal = make_withdrawal(profile, amount="10")
    fake_custody.transfer.side_effect = DefiniteTransferFailure("Transfer rejected: invalid address")

    with pytest.raises(DefiniteTransferFailure):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    db_session.refresh(withdrawal)
    assert withdrawal.status == W.PENDING
    assert withdrawal.needs_review is False
    assert "safe to retry" in withdrawal.admin_notes
    assert balance(db_session, profile) == Decimal("25")
    assert balance(db_session, referrer) == Decimal("0")


async def test_uncertain_outcome_flags_for_review(db_session, make_profile, make_withdrawal, fake_custody, escrow_settings):
    profile = make_profile(balance="25")
    withdrawal = make_withdrawal(profile, amount="10")
    fake_custody.transfer.side_effect = UncertainExternalOutcome("Transfer timed out after broadcast attempt")

    with pytest.raises(UncertainExternalOutcome):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    db_session.refresh(withdrawal)
    assert withdrawal.status == W.APPROVED
    assert withdrawal.needs_review is True
    assert withdrawal.admin_notes.startswith("MANUAL REVIEW REQUIRED")
    # Деньги остаются списанными до ручной сверки
    assert balance(db_session, profile) == Decimal("15")

    # Повторная автоматическая обработка запрещена
    with pytest.raises(InvalidTransition):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)
    fake_custody.transfer.assert_awaited_once()


async def test_unexpected_error_is_treated_as_uncertain(db_session, make_profile, make_withdrawal, fake_custody, escrow_settings):
    profile = make_profile(balance="25")
    withdrawal = make_withdrawal(profile, amount="10")
    fake_custody.transfer.side_effect = RuntimeError("connection reset by peer")

    with pytest.raises(UncertainExternalOutcome):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    db_session.refresh(withdrawal)
    assert withdrawal.needs_review is True
    assert balance(db_session, profile) == Decimal("15")


async def test_missing_api_key_blocks_payout_before_debit(db_session, make_profile, make_withdrawal, escrow_settings, mocker):
    mocker.patch.object(custody_service.settings, "TONAPI_KEY", "")
    settings_service.set(db_session, MNEMONIC_KEY, secret_store.encrypt(MNEMONIC, "test-passphrase"))
    custody = TonCustodyWallet(db_session, passphrase="test-passphrase")
    get_balance = mocker.patch.object(TonCustodyWallet, "get_balance", new_callable=AsyncMock, return_value=Decimal("1000"))
    profile = make_profile(balance="25")
    withdrawal = make_withdrawal(profile, amount="10")

    with pytest.raises(ConfigurationMissing):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, custody, escrow_settings)

    get_balance.assert_not_awaited()
    db_session.refresh(withdrawal)
    assert withdrawal.status == W.PENDING
    assert withdrawal.needs_review is False
    assert "custody wallet not ready" in withdrawal.admin_notes
    assert balance(db_session, profile) == Decimal("25")


async def test_undecryptable_mnemonic_blocks_payout_before_debit(db_session, make_profile, make_withdrawal, fake_custody, escrow_settings):
    fake_custody.ensure_ready.side_effect = DecryptionError("Failed to decrypt secret")
    profile = make_profile(balance="25")
    withdrawal = make_withdrawal(profile, amount="10")

    with pytest.raises(DecryptionError):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    fake_custody.transfer.assert_not_awaited()
    db_session.refresh(withdrawal)
    assert withdrawal.status == W.PENDING
    assert balance(db_session, profile) == Decimal("25")


async def test_custody_balance_timeout_keeps_request_pending(db_session, make_profile, make_withdrawal, fake_custody, escrow_settings):
    fake_custody.get_balance.side_effect = UncertainExternalOutcome("Custody balance request timed out")
    profile = make_profile(balance="25")
    withdrawal = make_withdrawal(profile, amount="10")

    with pytest.raises(UncertainExternalOutcome):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    fake_custody.transfer.assert_not_awaited()
    db_session.refresh(withdrawal)
    assert withdrawal.status == W.PENDING
    assert withdrawal.needs_review is False
    assert "custody balance unavailable" in withdrawal.admin_notes
    assert balance(db_session, profile) == Decimal("25")


async def test_configuration_error_during_transfer_refunds(db_session, make_profile, make_withdrawal, fake_custody, escrow_settings):
    fake_custody.transfer.side_effect = ConfigurationMissing("TONAPI_KEY is not configured.")
    profile = make_profile(balance="25")
    withdrawal = make_withdrawal(profile, amount="10")

    with pytest.raises(DefiniteTransferFailure):
        await withdrawal_service.process_automated_withdrawal(db_session, withdrawal.id, fake_custody, escrow_settings)

    db_session.refresh(withdrawal)
    assert withdrawal.status == W.PENDING
    assert withdrawal.needs_review is False
    assert balance(db_session, profile) == Decimal("25")


async def test_only_pending_ton_withdrawals_are_automated(db_session, make_profile, make_withdrawal, fake_custody, escrow_settings):
    profile = make_profile(balance="100", balance_mmk="100000")
    mmk = make_withdrawal(profile, amount="10000", fee="300", currency="MMK", method="KBZPAY", destination="+959123456789")
    with pytest.raises(ValidationError):
        await withdrawal_service.process_automated_withdrawal(db_session, mmk.id, fake_custody, escrow_settings)

    approved = make_withdrawal(profile, amount="10", status=W.APPROVED)
    with pytest.raises(AlreadyProcessed):
        await withdrawal_service.process_automated_withdrawal(db_session, approved.id, fake_custody, escrow_settings)
    fake_custody.transfer.assert_not_awaited()


# --- Ручная сверка ---

def test_reconcile_sent_completes_and_pays_referrals(db_session, make_profile, make_withdrawal, link_referral, escrow_settings):
    referrer = make_profile()
    profile = make_profile(balance="15")
    link_referral(referrer, profile)
    withdrawal = make_withdrawal(profile, amount="10", status=W.APPROVED, needs_review=True)

    with pytest.raises(ValidationError):
        withdrawal_service.reconcile_withdrawal(db_session, withdrawal.id, escrow_settings, was_sent=True)

    reconciled = withdrawal_service.reconcile_withdrawal(
        db_session, withdrawal.id, escrow_settings, was_sent=True, reference="onchain-hash"
    )

    assert reconciled.status == W.COMPLETED
    assert reconciled.needs_review is False
    assert reconciled.tx_reference == "onchain-hash"
    assert balance(db_session, profile) == Decimal("15")
    assert balance(db_session, referrer) == Decimal("0.5")


def test_reconcile_not_sent_refunds(db_session, make_profile, make_withdrawal, escrow_settings):
    profile = make_profile(balance="15")
    withdrawal = make_withdrawal(profile, amount="10", status=W.APPROVED, needs_review=True)

    reconciled = withdrawal_service.reconcile_withdrawal(db_session, withdrawal.id, escrow_settings, was_sent=False)

    assert reconciled.status == W.PENDING
    assert reconciled.needs_review is False
    assert balance(db_session, profile) == Decimal("25")
    assert db_session.query(ReferralEarning).count() == 0


def test_reconcile_requires_review_flag(db_session, make_profile, make_withdrawal, escrow_settings):
    profile = make_profile(balance="15")
    withdrawal = make_withdrawal(profile, amount="10", status=W.APPROVED)

    with pytest.raises(InvalidTransition):
        withdrawal_service.reconcile_withdrawal(db_session, withdrawal.id, escrow_settings, was_sent=False)
    assert balance(db_session, profile) == Decimal("15")


# --- Фоновая задача ---

async def test_auto_withdraw_task_skips_in_manual_mode(db_session, make_profile, make_withdrawal, fake_custody):
    profile = make_profile(balance="25")
    make_withdrawal(profile, amount="10")

    report = await withdrawal_service.auto_withdraw_task(db_session, custody=fake_custody)

    assert report.skipped is True
    fake_custody.transfer.assert_not_awaited()


async def test_auto_withdraw_task_processes_batch(db_session, make_profile, make_withdrawal, fake_custody):
    settings_service.set(db_session, "withdrawal_mode", "auto")
    first, second = make_profile(balance="25"), make_profile(balance="25")
    make_withdrawal(first, amount="10")
    make_withdrawal(second, amount="5", fee="0.15")
    flagged = make_withdrawal(first, amount="2", status=W.APPROVED, needs_review=True)

    report = await withdrawal_service.auto_withdraw_task(db_session, custody=fake_custody)

    assert report.skipped is False
    assert report.processed == 2
    assert report.failed == 0
    assert fake_custody.transfer.await_count == 2
    assert balance(db_session, first) == Decimal("15")
    assert balance(db_session, second) == Decimal("20")
    db_session.refresh(flagged)
    assert flagged.status == W.APPROVED


async def test_auto_withdraw_task_stops_when_custody_is_short(db_session, make_profile, make_withdrawal, fake_custody):
    settings_service.set(db_session, "withdrawal_mode", "auto")
    profile = make_profile(balance="100")
    make_withdrawal(profile, amount="10")
    make_withdrawal(profile, amount="10")
    fake_custody.get_balance.return_value = Decimal("1")

    report = await withdrawal_service.auto_withdraw_task(db_session, custody=fake_custody)

    assert report.failed == 1
    assert report.processed == 0
    assert fake_custody.get_balance.await_count == 1
    assert balance(db_session, profile) == Decimal("100")


async def test_auto_withdraw_task_stops_when_balance_is_unknown(db_session, make_profile, make_withdrawal, fake_custody):
    settings_service.set(db_session, "withdrawal_mode", "auto")
    profile = make_profile(balance="100")
    make_withdrawal(profile, amount="10")
    make_withdrawal(profile, amount="10")
    fake_custody.get_balance.side_effect = UncertainExternalOutcome("Custody balance request timed out")

    report = await withdrawal_service.auto_withdraw_task(db_session, custody=fake_custody)

    assert report.failed == 1
    assert report.needs_review == 0
    assert fake_custody.get_balance.await_count == 1
    fake_custody.transfer.assert_not_awaited()
    assert balance(db_session, profile) == Decimal("100")


async def test_auto_withdraw_task_forced_without_configured_wallet(db_session, fake_custody):
    fake_custody.is_configured.return_value = False

    report = await withdrawal_service.auto_withdraw_task(db_session, custody=fake_custody, force=True)

    assert report.skipped is True
    assert report.reason == "custody wallet is not configured"
