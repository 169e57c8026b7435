"""
Tests for WalletLedger - the persisted wallet list.

Tests cover:
- File creation and JSON key layout
- Upsert by address and timestamp stamping
- Legacy records without a status
- Corrupt file handling
- Transaction hash history
"""

import json

import pytest

from volumebot.state.wallet_ledger import WalletLedger, WalletRecord, WalletStatus


def _record(index: int, address: str, **kwargs) -> WalletRecord:
    return WalletRecord(index=index, address=address, private_key="ab" * 32, **kwargs)


ADDR_A = "0x" + "a" * 40
ADDR_B = "0x" + "b" * 40


class TestWalletLedgerPersistence:

    def test_missing_file_is_created_empty(self, tmp_path):
        path = tmp_path / "wallets.json"
        ledger = WalletLedger(path)

        assert len(ledger) == 0
        assert json.loads(path.read_text()) == []

    def test_upsert_writes_camel_case_keys(self, tmp_path):
        path = tmp_path / "wallets.json"
        ledger = WalletLedger(path)

        ledger.upsert(_record(0, ADDR_A, deposit_bnb=0.2, status=WalletStatus.DEPOSITED))

        raw = json.loads(path.read_text())
        assert raw[0]["address"] == ADDR_A
        assert raw[0]["privateKey"] == "ab" * 32
        assert raw[0]["depositBNB"] == 0.2
        assert raw[0]["status"] == "DEPOSITED"
        assert raw[0]["timestamp"]
        assert "buyTxHash" not in raw[0]

    def test_reload_sees_changes_from_another_writer(self, tmp_path):
        path = tmp_path / "wallets.json"
        ledger = WalletLedger(path)
        other = WalletLedger(path)

        other.upsert(_record(0, ADDR_A))
        assert len(ledger) == 0

        ledger.reload()
        assert len(ledger) == 1

    def test_no_temp_file_left_behind(self, tmp_path):
        ledger = WalletLedger(tmp_path / "wallets.json")
        ledger.upsert(_record(0, ADDR_A))

        assert not (tmp_path / "wallets.json.tmp").exists()

    def test_corrupt_file_loads_empty(self, tmp_path):
        path = tmp_path / "wallets.json"
        path.write_text("{not json")

        ledger = WalletLedger(path)

        assert ledger.records == []


class TestWalletLedgerUpsert:

    def test_upsert_replaces_by_address_case_insensitive(self, ledger):
        ledger.upsert(_record(0, ADDR_A))
        ledger.upsert(_record(0, ADDR_A.upper().replace("0X", "0x"), status=WalletStatus.BOUGHT))

        assert len(ledger) == 1
        assert ledger.get(ADDR_A).status == WalletStatus.BOUGHT

    def test_upsert_returns_stamped_copy(self, ledger):
        original = _record(0, ADDR_A)
        stored = ledger.upsert(original)

        assert stored.timestamp
        assert original.timestamp == ""

    def test_next_index(self, ledger):
        assert ledger.next_index() == 0
        ledger.upsert(_record(0, ADDR_A))
        ledger.upsert(_record(4, ADDR_B))
        assert ledger.next_index() == 5

    def test_funded_and_bought_views(self, ledger):
        ledger.upsert(_record(0, ADDR_A, deposit_bnb=0.1, buy_tx_hash="0x01"))
        ledger.upsert(_record(1, ADDR_B))

        assert [r.address for r in ledger.funded_records()] == [ADDR_A]
        assert [r.address for r in ledger.bought_records()] == [ADDR_A]

    def test_duplicate_entries_on_disk_keep_latest(self, tmp_path):
        path = tmp_path / "wallets.json"
        path.write_text(json.dumps([
            {"index": 0, "address": ADDR_A, "privateKey": "k", "status": "CREATED"},
            {"index": 0, "address": ADDR_A, "privateKey": "k", "status": "SOLD"},
        ]))

        ledger = WalletLedger(path)

        assert len(ledger) == 1
        assert ledger.get(ADDR_A).status == WalletStatus.SOLD


class TestWalletRecord:

    def test_legacy_record_with_deposit_is_deposited(self):
        record = WalletRecord.from_dict({"index": 2, "address": ADDR_A, "privateKey": "k", "depositBNB": 0.05})
        assert record.status == WalletStatus.DEPOSITED

    def test_legacy_record_without_deposit_is_created(self):
        record = WalletRecord.from_dict({"index": 2, "address": ADDR_A, "privateKey": "k"})
        assert record.status == WalletStatus.CREATED

    def test_tx_history_is_comma_joined(self):
        record = _record(0, ADDR_A)
        record.append_buy_tx("0x01")
        record.append_buy_tx("0x02")
        record.append_sell_tx("0x03")

        assert record.buy_tx_hash == "0x01,0x02"
        assert record.sell_tx_hash == "0x03"
        assert record.has_bought

    def test_repr_hides_private_key(self):
        assert "ab" * 32 not in repr(_record(0, ADDR_A))

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ValueError):
            WalletRecord.from_dict({"index": 0, "address": ADDR_A, "privateKey": "k", "status": "BOGUS"})
