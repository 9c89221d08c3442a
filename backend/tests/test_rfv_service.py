"""
Unique CRM - Full RFV recalculation job
"""

from datetime import datetime, timezone

import pytest

from services import rfv_service
from services.rfv_service import recalculate_rfv
from services.store import PartialWriteError, StoreError, fetch_all

NOW = datetime(2025, 6, 30, tzinfo=timezone.utc)


def _tx(name, day, amount, **extra):
    return {"patient_name": name, "date": day, "amount": amount, **extra}


async def _seed(store):
    await store.insert("revenue_records", [
        _tx("Ana Souza", "2025-06-20", 60000, patient_email="ana@mail.com"),
        _tx("Ana Souza", "2025-03-27", 60000),
        _tx("Bruno Alves", "2023-01-10", 900),
        _tx("12345678900", "2025-06-01", 5000),
    ])
    await store.insert("executed_records", [
        _tx("ana souza", "2025-06-20", 60000, patient_prontuario="P-1"),
        _tx("Ana Souza", "2025-03-27", 60000),
    ])


class TestRecalculate:
    @pytest.mark.asyncio
    async def test_profiles_are_written_per_customer(self, store):
        await _seed(store)
        result = await recalculate_rfv(store, now=NOW)

        assert result.success is True
        assert result.stats.source_record_counts == {"revenue": 4, "executed": 2}
        assert result.stats.unique_customers == 2
        assert result.stats.updated == 2
        assert result.stats.errors == 0

        ana = await store.find_one("rfv_customers", {"name_key": "ana souza"})
        assert ana["total_value"] == 120000
        assert ana["total_purchases"] == 4
        assert ana["segment"] == "loyal"
        assert ana["email"] == "ana@mail.com"
        assert ana["prontuario"] == "P-1"

        bruno = await store.find_one("rfv_customers", {"name_key": "bruno alves"})
        assert bruno["segment"] == "lost"

    @pytest.mark.asyncio
    async def test_rerun_overwrites_instead_of_duplicating(self, store):
        await _seed(store)
        await recalculate_rfv(store, now=NOW)
        await recalculate_rfv(store, now=NOW)
        assert len(await fetch_all(store, "rfv_customers")) == 2

    @pytest.mark.asyncio
    async def test_result_json_is_camel_case(self, store):
        await _seed(store)
        body = (await recalculate_rfv(store, now=NOW)).to_json()
        assert body["stats"]["sourceRecordCounts"]["revenue"] == 4
        assert body["stats"]["uniqueCustomers"] == 2

    @pytest.mark.asyncio
    async def test_failed_upsert_chunk_is_counted(self, store, monkeypatch):
        await _seed(store)

        async def broken_upsert(table, rows, conflict_key):
            raise StoreError("upsert rfv_customers failed: timeout")

        monkeypatch.setattr(store, "upsert", broken_upsert)
        result = await recalculate_rfv(store, now=NOW)
        assert result.success is True
        assert result.stats.updated == 0
        assert result.stats.errors == 2

    @pytest.mark.asyncio
    async def test_read_failure_is_a_hard_failure(self, store, monkeypatch):
        async def broken_query(*args, **kwargs):
            raise StoreError("query revenue_records failed")

        monkeypatch.setattr(store, "query", broken_query)
        result = await recalculate_rfv(store, now=NOW)
        assert result.success is False
        assert "revenue_records" in result.error

    @pytest.mark.asyncio
    async def test_partially_written_chunk_counts_only_failed_rows(self, store, monkeypatch):
        await _seed(store)

        async def half_upsert(table, rows, conflict_key):
            raise PartialWriteError("upsert rfv_customers: 1 of 2 rows failed", written=1)

        monkeypatch.setattr(store, "upsert", half_upsert)
        result = await recalculate_rfv(store, now=NOW)
        assert result.success is True
        assert result.stats.updated == 1
        assert result.stats.errors == 1


class TestMalformedTransactions:
    @pytest.mark.asyncio
    async def test_numeric_names_stored_as_numbers_are_skipped(self, store):
        await store.insert("revenue_records", [
            _tx(12345678900, "2025-06-01", 5000),
            _tx("Ana Souza", "2025-06-20", "R$ 1.500,00"),
        ])
        result = await recalculate_rfv(store, now=NOW)

        assert result.success is True
        assert result.stats.unique_customers == 1
        ana = await store.find_one("rfv_customers", {"name_key": "ana souza"})
        assert ana["total_value"] == 1500.0

    @pytest.mark.asyncio
    async def test_profile_build_failure_is_reported(self, store, monkeypatch):
        await _seed(store)

        def broken_classify(acc, now):
            raise ArithmeticError("bad accumulator")

        monkeypatch.setattr(rfv_service, "classify", broken_classify)
        result = await recalculate_rfv(store, now=NOW)
        assert result.success is False
        assert "bad accumulator" in result.error
