import unittest
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from finsync.ledger import HoldingRecord, LedgerWriter, SnapshotValues, SyncLogEntry, TransactionRecord
from finsync.schema import (
    balances,
    external_accounts,
    financial_asset_prices,
    financial_assets,
    holdings,
    portfolio_snapshots,
)
from finsync.tests.fakes import memory_engine


def make_transaction(**overrides) -> TransactionRecord:
    values = {
        "external_ref": "payments:activity-1",
        "user_id": "user-1",
        "account_id": None,
        "type": "EXPENSE",
        "amount": Decimal("12.50"),
        "currency": "EUR",
        "amount_in_base_currency": Decimal("12.50"),
        "date": datetime(2024, 5, 1, 10, 0),
        "description": "Coffee",
    }
    values.update(overrides)
    return TransactionRecord(**values)


def make_holding(name: str, value: str) -> HoldingRecord:
    return HoldingRecord(
        instrument_name=name,
        instrument_type="equity",
        isin=None,
        shares=Decimal("1"),
        value=Decimal(value),
        weight=Decimal("50"),
    )


class LedgerWriterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.ledger = LedgerWriter(self.engine)

    def test_account_upsert_is_keyed_on_natural_key(self) -> None:
        first = self.ledger.upsert_account(
            user_id="user-1", source="payments", external_account_id="101", account_type="PERSONAL"
        )
        second = self.ledger.upsert_account(
            user_id="user-1", source="payments", external_account_id="101", account_type="BUSINESS"
        )

        self.assertEqual(first.id, second.id)
        with self.engine.begin() as conn:
            rows = conn.execute(select(external_accounts.c.account_type)).all()
        self.assertEqual([row.account_type for row in rows], ["BUSINESS"])

    def test_missing_net_contributions_keeps_previous_value(self) -> None:
        account = self.ledger.upsert_account(
            user_id="user-1", source="investment", external_account_id="ABC",
            account_type="mutual", net_contributions=Decimal("5000"),
        )
        self.ledger.upsert_account(
            user_id="user-1", source="investment", external_account_id="ABC", account_type="mutual"
        )

        with self.engine.begin() as conn:
            stored = conn.execute(
                select(external_accounts.c.net_contributions).where(external_accounts.c.id == account.id)
            ).scalar_one()
        self.assertEqual(stored, Decimal("5000"))

    def test_mark_synced_updates_last_sync(self) -> None:
        account = self.ledger.upsert_account(
            user_id="user-1", source="payments", external_account_id="101", account_type="PERSONAL"
        )
        self.assertIsNone(account.last_sync_at)

        self.ledger.mark_account_synced(account.id, datetime(2024, 6, 1, 8, 0))
        again = self.ledger.upsert_account(
            user_id="user-1", source="payments", external_account_id="101", account_type="PERSONAL"
        )

        self.assertEqual(again.last_sync_at, datetime(2024, 6, 1, 8, 0))

    def test_duplicate_transaction_is_stored_once(self) -> None:
        created = self.ledger.add_transaction(make_transaction())
        duplicate = self.ledger.add_transaction(make_transaction(amount=Decimal("99")))

        self.assertTrue(created)
        self.assertFalse(duplicate)
        self.assertEqual(self.ledger.count_transactions("user-1"), 1)
        self.assertTrue(self.ledger.transaction_exists("payments:activity-1"))

    def test_balance_upsert_overwrites_amount(self) -> None:
        account = self.ledger.upsert_account(
            user_id="user-1", source="payments", external_account_id="101", account_type="PERSONAL"
        )
        for amount in ("10", "25.75"):
            self.ledger.upsert_balance(
                account_id=account.id, source="payments", external_balance_id="9",
                currency="EUR", amount=Decimal(amount),
            )

        with self.engine.begin() as conn:
            amounts = conn.execute(select(balances.c.amount)).scalars().all()
        self.assertEqual(amounts, [Decimal("25.75")])

    def test_snapshot_upsert_and_holdings_replacement(self) -> None:
        account = self.ledger.upsert_account(
            user_id="user-1", source="investment", external_account_id="ABC", account_type="mutual"
        )
        values = SnapshotValues(
            date=date(2024, 6, 14),
            total_value=Decimal("1000"),
            total_invested=Decimal("900"),
            returns=Decimal("100"),
            returns_percent=Decimal("11.11"),
        )
        snapshot_id = self.ledger.upsert_snapshot(account.id, values)
        self.ledger.replace_holdings(snapshot_id, [make_holding("A", "500"), make_holding("B", "500")])

        same_id = self.ledger.upsert_snapshot(account.id, values)
        self.ledger.replace_holdings(same_id, [make_holding("C", "1000")])

        self.assertEqual(snapshot_id, same_id)
        with self.engine.begin() as conn:
            names = conn.execute(
                select(holdings.c.instrument_name).where(holdings.c.snapshot_id == snapshot_id)
            ).scalars().all()
        self.assertEqual(names, ["C"])

    def test_snapshot_and_holdings_are_written_together(self) -> None:
        account = self.ledger.upsert_account(
            user_id="user-1", source="investment", external_account_id="ABC", account_type="mutual"
        )
        original = SnapshotValues(
            date=date(2024, 6, 14),
            total_value=Decimal("1000"),
            total_invested=Decimal("900"),
            returns=Decimal("100"),
            returns_percent=Decimal("11.11"),
        )
        snapshot_id = self.ledger.upsert_snapshot(account.id, original, positions=[make_holding("A", "1000")])
        updated = SnapshotValues(
            date=date(2024, 6, 14),
            total_value=Decimal("2000"),
            total_invested=Decimal("900"),
            returns=Decimal("1100"),
            returns_percent=Decimal("122.22"),
        )

        with self.assertRaises(IntegrityError):
            self.ledger.upsert_snapshot(account.id, updated, positions=[make_holding(None, "2000")])

        with self.engine.begin() as conn:
            total_value = conn.execute(
                select(portfolio_snapshots.c.total_value).where(portfolio_snapshots.c.id == snapshot_id)
            ).scalar_one()
            names = conn.execute(
                select(holdings.c.instrument_name).where(holdings.c.snapshot_id == snapshot_id)
            ).scalars().all()
        self.assertEqual(total_value, Decimal("1000"))
        self.assertEqual(names, ["A"])

    def test_asset_price_is_recorded_once_per_day(self) -> None:
        with self.engine.begin() as conn:
            asset_id = conn.execute(
                insert(financial_assets).values(
                    user_id="user-1", symbol="AAPL", name="Apple", type="STOCK",
                    shares=Decimal("2"), avg_cost_basis=Decimal("150"), currency="USD",
                )
            ).inserted_primary_key[0]

        self.ledger.record_asset_price(asset_id, Decimal("200"), datetime(2024, 6, 14, 9, 0))
        self.ledger.record_asset_price(asset_id, Decimal("205"), datetime(2024, 6, 14, 17, 0))

        with self.engine.begin() as conn:
            prices = conn.execute(select(financial_asset_prices.c.price)).scalars().all()
            last_price = conn.execute(select(financial_assets.c.last_price)).scalar_one()
        self.assertEqual(prices, [Decimal("205")])
        self.assertEqual(last_price, Decimal("205"))
        self.assertEqual([asset.symbol for asset in self.ledger.list_financial_assets("user-1")], ["AAPL"])

    def test_last_sync_info_returns_latest_entry(self) -> None:
        self.assertEqual(self.ledger.last_sync_info("user-1"), (None, None))

        self.ledger.append_sync_log(SyncLogEntry(user_id="user-1", mode="full", status="FAILED"))
        self.ledger.append_sync_log(SyncLogEntry(user_id="user-1", mode="light", status="SUCCESS"))

        created_at, status = self.ledger.last_sync_info("user-1")
        self.assertIsNotNone(created_at)
        self.assertEqual(status, "SUCCESS")


if __name__ == "__main__":
    unittest.main()
