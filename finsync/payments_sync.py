from __future__ import annotations

from datetime import datetime
import logging

from finsync.activity_normalizer import normalize_activity
from finsync.classification_engine import KeywordCategorizer
from finsync.currency_conversion import CurrencyRateCache
from finsync.errors import RateLimitError, SyncError, ValidationError
from finsync.ledger import LedgerWriter, TransactionRecord
from finsync.outcome import PaymentsStats, SourceOutcome
from finsync.payments_client import SOURCE, PaymentsClient, PaymentsProfile
from finsync.sync_window import SyncMode, compute_window

logger = logging.getLogger(__name__)


def sync_payments(
    client: PaymentsClient,
    ledger: LedgerWriter,
    *,
    user_id: str,
    mode: SyncMode,
    rates: CurrencyRateCache,
    categorizer: KeywordCategorizer,
    base_currency: str,
    now: datetime,
) -> SourceOutcome[PaymentsStats]:
    """Sync every payments profile in turn.

    A rate-limit response stops the batch; the profiles not finished are
    counted as skipped and the outcome stays ok. Any other provider error
    fails the step.
    """
    stats = PaymentsStats()
    profiles: list[PaymentsProfile] = []
    try:
        profiles = client.list_accounts()
        for profile in profiles:
            _sync_profile(
                client,
                ledger,
                profile,
                stats,
                user_id=user_id,
                mode=mode,
                rates=rates,
                categorizer=categorizer,
                base_currency=base_currency,
                now=now,
            )
            stats.profiles_synced += 1
    except RateLimitError as exc:
        stats.profiles_skipped = len(profiles) - stats.profiles_synced
        logger.warning(
            "Payments rate limit reached; %d profiles skipped: %s", stats.profiles_skipped, exc.message
        )
        return SourceOutcome.stopped(SOURCE, stats, exc)
    except SyncError as exc:
        logger.warning("Payments sync failed: %s", exc.message)
        return SourceOutcome.failure(SOURCE, stats, exc)
    return SourceOutcome.success(SOURCE, stats)


def _sync_profile(
    client: PaymentsClient,
    ledger: LedgerWriter,
    profile: PaymentsProfile,
    stats: PaymentsStats,
    *,
    user_id: str,
    mode: SyncMode,
    rates: CurrencyRateCache,
    categorizer: KeywordCategorizer,
    base_currency: str,
    now: datetime,
) -> None:
    account = ledger.upsert_account(
        user_id=user_id,
        source=SOURCE,
        external_account_id=profile.id,
        account_type=profile.type,
    )

    for balance in client.get_balances(profile.id):
        ledger.upsert_balance(
            account_id=account.id,
            source=SOURCE,
            external_balance_id=balance.id,
            currency=balance.currency,
            amount=balance.amount,
        )
        stats.balances_updated += 1

    window = compute_window(mode, account.last_sync_at, now)
    activities = client.get_activities(profile.id, window.start, window.end)
    for activity in activities:
        if _store_activity(
            activity,
            ledger,
            user_id=user_id,
            account_id=account.id,
            rates=rates,
            categorizer=categorizer,
            base_currency=base_currency,
        ):
            stats.transactions_added += 1
        else:
            stats.activities_skipped += 1

    ledger.mark_account_synced(account.id, now)
    logger.info(
        "Synced %d activities for payments profile %s (%s to %s)",
        len(activities), profile.id, window.start, window.end,
    )


def _store_activity(
    activity: dict,
    ledger: LedgerWriter,
    *,
    user_id: str,
    account_id: int,
    rates: CurrencyRateCache,
    categorizer: KeywordCategorizer,
    base_currency: str,
) -> bool:
    try:
        normalized = normalize_activity(activity)
    except ValidationError as exc:
        logger.warning("Skipping payments activity %s: %s", activity.get("id"), exc.message)
        return False
    if normalized is None or ledger.transaction_exists(normalized.external_ref):
        return False

    try:
        amount_in_base = rates.convert(normalized.amount, normalized.currency, base_currency, normalized.date)
    except SyncError as exc:
        logger.warning(
            "No %s/%s rate for %s, storing unconverted amount: %s",
            normalized.currency, base_currency, normalized.external_ref, exc.message,
        )
        amount_in_base = normalized.amount

    return ledger.add_transaction(
        TransactionRecord(
            external_ref=normalized.external_ref,
            user_id=user_id,
            account_id=account_id,
            type=normalized.type.value,
            amount=normalized.amount,
            currency=normalized.currency,
            amount_in_base_currency=abs(amount_in_base),
            date=normalized.date,
            description=normalized.description,
            category_id=categorizer.categorize(normalized.description),
        )
    )
