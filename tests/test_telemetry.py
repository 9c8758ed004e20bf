from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import HZ_DOC, FailingSource, FakeSource, MemoryRepo
from hydromon.domain.errors import RemoteResponseError
from hydromon.domain.models import Provenance, ReadingCreate
from hydromon.services.telemetry import TelemetryService
from hydromon.storage.fallback import is_synthetic


def _service(source, repo, clock, **kwargs) -> TelemetryService:
    return TelemetryService(source, repo, cache_timeout_s=10.0, default_device="HZ1", clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_fresh_reading_is_stored_and_served(repo, clock) -> None:
    svc = _service(FakeSource(), repo, clock)
    await svc.start()

    result = await svc.fetch_readings(5)

    assert result.provenance is Provenance.FRESH
    assert len(result.readings) == 1
    assert result.latest.ph == pytest.approx(6.56)
    status = await svc.get_system_status()
    assert status.connection_status == "connected"
    assert status.data_points == 1
    assert repo.status.data_points == 1


@pytest.mark.asyncio
async def test_two_reads_within_cache_window_fetch_once(repo, clock) -> None:
    source = FakeSource()
    svc = _service(source, repo, clock)
    await svc.start()

    await svc.fetch_readings(1)
    clock.advance(9.9)
    second = await svc.fetch_readings(1)

    assert source.calls == 1
    assert second.provenance is Provenance.STALE_CACHE

    clock.advance(0.2)
    await svc.fetch_readings(1)
    assert source.calls == 2


@pytest.mark.asyncio
async def test_concurrent_reads_share_one_remote_fetch(repo, clock) -> None:
    source = FakeSource()
    svc = _service(source, repo, clock)
    await svc.start()

    results = await asyncio.gather(*(svc.fetch_readings(1) for _ in range(5)))

    assert source.calls == 1
    assert all(r.readings for r in results)


@pytest.mark.asyncio
async def test_cache_window_applies_without_storage(clock) -> None:
    source = FakeSource()
    svc = _service(source, None, clock)
    await svc.start()

    first = await svc.fetch_readings(3)
    second = await svc.fetch_readings(3)

    assert source.calls == 1
    assert first.provenance is Provenance.FRESH
    assert first.latest.id.startswith("external_")
    assert second.provenance is Provenance.STALE_CACHE
    assert len(second.readings) == 3


@pytest.mark.asyncio
async def test_storage_failing_everywhere_serves_memory_only(clock) -> None:
    repo = MemoryRepo(fail=True)
    svc = _service(FakeSource(), repo, clock)
    await svc.start()
    assert svc.store_healthy is False
    calls_after_start = list(repo.calls)

    result = await svc.fetch_readings(10)
    created = await svc.create_sensor_reading(ReadingCreate(temperature=21.0, ph=6.5, tds_level=700.0))
    await svc.update_system_status(cpu_usage=50.0)

    assert repo.calls == calls_after_start
    assert result.provenance is Provenance.FRESH
    assert result.latest.id.startswith("external_")
    assert len(result.readings) == 6  # remote reading + five samples
    assert created.id.startswith("memory_")


@pytest.mark.asyncio
async def test_insert_failure_flips_health_and_keeps_reading(repo, clock) -> None:
    svc = _service(FakeSource(), repo, clock)
    await svc.start()
    repo.fail = True

    result = await svc.fetch_readings(2)

    assert svc.store_healthy is False
    assert result.latest.id.startswith("external_")
    assert result.latest.temperature == pytest.approx(25.0)
    assert result.provenance is Provenance.FRESH

    calls = len(repo.calls)
    clock.advance(60)
    await svc.fetch_readings(2)
    await svc.create_sensor_reading(ReadingCreate(temperature=20.0, ph=6.0, tds_level=600.0))
    assert len(repo.calls) == calls


@pytest.mark.asyncio
async def test_remote_failure_serves_stale_storage(repo, clock) -> None:
    svc = _service(FailingSource(), repo, clock)
    await svc.start()
    await svc.create_sensor_reading(ReadingCreate(temperature=22.0, ph=6.2, tds_level=800.0))

    result = await svc.fetch_readings(5)

    assert result.provenance is Provenance.STALE_STORAGE
    assert result.latest.temperature == pytest.approx(22.0)
    assert (await svc.get_system_status()).connection_status == "error"


@pytest.mark.asyncio
async def test_empty_storage_seeds_one_sample_in_development(repo, clock) -> None:
    svc = _service(FailingSource(), repo, clock)
    await svc.start()

    result = await svc.fetch_readings(5)

    assert result.provenance is Provenance.SYNTHETIC
    assert len(result.readings) == 1
    assert result.latest.temperature == pytest.approx(25.5)
    assert len(repo.rows) == 1


@pytest.mark.asyncio
async def test_empty_storage_in_production_serves_memory_samples(repo, clock) -> None:
    svc = _service(FailingSource(), repo, clock, production=True)
    await svc.start()

    result = await svc.fetch_readings(3)

    assert result.provenance is Provenance.SYNTHETIC
    assert len(result.readings) == 3
    assert all(is_synthetic(r) for r in result.readings)
    assert repo.rows == []


@pytest.mark.asyncio
async def test_first_read_with_nothing_reachable_is_synthetic(clock) -> None:
    svc = _service(FailingSource(), MemoryRepo(fail=True), clock)
    await svc.start()

    result = await svc.fetch_readings(50)

    assert result.provenance is Provenance.SYNTHETIC
    assert len(result.readings) == 5


@pytest.mark.asyncio
async def test_undecodable_document_marks_connection_error(repo, clock) -> None:
    svc = _service(FakeSource({"device_code": "ZZ1", "hex": "029003ac00fa"}), repo, clock)
    await svc.start()

    await svc.fetch_readings(1)

    assert (await svc.get_system_status()).connection_status == "error"
    assert all(r.temperature != 25.0 for r in repo.rows)


@pytest.mark.asyncio
async def test_recovers_after_a_failed_fetch(repo, clock) -> None:
    source = FakeSource(RemoteResponseError("boom", status_code=500), dict(HZ_DOC))
    svc = _service(source, repo, clock)
    await svc.start()

    await svc.fetch_readings(1)
    result = await svc.fetch_readings(1)

    assert source.calls == 2
    assert result.provenance is Provenance.FRESH
    assert (await svc.get_system_status()).connection_status == "connected"


@pytest.mark.asyncio
async def test_unexpected_error_degrades_to_fallback(repo, clock) -> None:
    svc = _service(FakeSource(RuntimeError("bug")), repo, clock)
    await svc.start()

    result = await svc.fetch_readings(2)

    assert svc.store_healthy is False
    assert len(result.readings) == 2
    assert result.provenance is Provenance.SYNTHETIC


@pytest.mark.asyncio
async def test_create_then_read_round_trip_healthy(repo, clock) -> None:
    svc = _service(FailingSource(), repo, clock)
    await svc.start()

    created = await svc.create_sensor_reading(ReadingCreate(temperature=23.3, ph=5.8, tds_level=1010.0))
    latest = (await svc.get_sensor_readings(1))[0]

    assert latest == created
    assert (await svc.get_system_status()).data_points == 1


@pytest.mark.asyncio
async def test_create_then_read_round_trip_unhealthy(clock) -> None:
    svc = _service(FailingSource(), MemoryRepo(fail=True), clock)
    await svc.start()

    created = await svc.create_sensor_reading(ReadingCreate(temperature=23.3, ph=5.8, tds_level=1010.0))
    latest = (await svc.get_sensor_readings(1))[0]

    assert latest == created
    assert latest.id.startswith("memory_")


@pytest.mark.asyncio
async def test_create_then_read_round_trip_unhealthy_with_remote_up(clock) -> None:
    svc = _service(FakeSource(), MemoryRepo(fail=True), clock)
    await svc.start()
    await svc.fetch_readings(1)

    created = await svc.create_sensor_reading(ReadingCreate(temperature=23.3, ph=5.8, tds_level=1010.0))
    latest = (await svc.get_sensor_readings(1))[0]

    assert latest == created
    assert latest.id.startswith("memory_")


@pytest.mark.asyncio
async def test_memory_readings_are_served_newest_first(clock) -> None:
    # remote reports a timestamp older than the fallback samples
    svc = _service(FakeSource(), None, clock)
    await svc.start()

    await svc.fetch_readings(1)
    await svc.create_sensor_reading(ReadingCreate(temperature=21.0, ph=6.1, tds_level=700.0))
    clock.advance(10.1)
    result = await svc.fetch_readings(10)

    stamps = [r.timestamp for r in result.readings]
    assert stamps == sorted(stamps, reverse=True)
    assert result.latest.id.startswith("external_")
    assert result.latest.timestamp > datetime(2026, 1, 1, 12, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_fallback_buffer_is_capped_while_storage_is_down(clock) -> None:
    svc = _service(FakeSource(), MemoryRepo(fail=True), clock, buffer_size=20)
    await svc.start()

    for _ in range(100):
        await svc.fetch_readings(1)
        clock.advance(10.1)

    assert len(svc.buffer) == 20
    assert all(not is_synthetic(r) for r in svc.buffer.head(20))


@pytest.mark.asyncio
async def test_memory_ids_are_unique_within_a_millisecond(clock) -> None:
    svc = _service(FailingSource(), None, clock)
    await svc.start()

    created = await asyncio.gather(
        *(svc.create_sensor_reading(ReadingCreate(temperature=20.0, ph=6.0, tds_level=600.0)) for _ in range(20))
    )

    assert len({r.id for r in created}) == 20


@pytest.mark.asyncio
async def test_time_range_on_storage_is_ascending(repo, clock) -> None:
    svc = _service(FailingSource(), repo, clock)
    await svc.start()
    base = datetime(2026, 4, 1, tzinfo=timezone.utc)
    for minutes in (30, 10, 20, 90):
        await svc.create_sensor_reading(
            ReadingCreate(temperature=20.0 + minutes / 10, ph=6.0, tds_level=500.0, timestamp=base + timedelta(minutes=minutes))
        )

    rows = await svc.get_sensor_readings_by_time_range(base, base + timedelta(hours=1))

    assert [r.timestamp for r in rows] == [base + timedelta(minutes=m) for m in (10, 20, 30)]


@pytest.mark.asyncio
async def test_time_range_falls_back_to_memory(clock) -> None:
    svc = _service(FailingSource(), None, clock)
    await svc.start()
    now = datetime.now(timezone.utc)

    rows = await svc.get_sensor_readings_by_time_range(now - timedelta(minutes=10), now)

    assert len(rows) == 5
    assert rows == sorted(rows, key=lambda r: r.timestamp)
    with pytest.raises(ValueError):
        await svc.get_sensor_readings_by_time_range(now, now - timedelta(minutes=1))


@pytest.mark.asyncio
async def test_status_update_merges_fields(repo, clock) -> None:
    svc = _service(FailingSource(), repo, clock)
    await svc.start()

    before = await svc.get_system_status()
    after = await svc.update_system_status(cpu_usage=71.5, memory_usage=None)

    assert after.cpu_usage == 71.5
    assert after.memory_usage == before.memory_usage
    assert after.last_update >= before.last_update
    assert repo.status.cpu_usage == 71.5
    with pytest.raises(ValueError):
        await svc.update_system_status(bogus=1)


@pytest.mark.asyncio
async def test_alert_settings_merge_and_persist(repo, clock) -> None:
    svc = _service(FailingSource(), repo, clock)
    await svc.start()

    updated = await svc.update_alert_settings(tds_level_alerts=True, ph_alerts=None)

    assert updated.tds_level_alerts is True
    assert updated.ph_alerts is True
    assert repo.alerts == updated


@pytest.mark.asyncio
async def test_health_only_rearms_after_successful_probe(repo, clock) -> None:
    svc = _service(FailingSource(), repo, clock)
    await svc.start()
    repo.fail = True
    await svc.fetch_readings(1)
    assert svc.store_healthy is False

    repo.fail = False
    await svc.fetch_readings(1)
    assert svc.store_healthy is False

    assert await svc.probe_storage() is True
    assert svc.store_healthy is True


@pytest.mark.asyncio
async def test_non_positive_limit_is_rejected(clock) -> None:
    svc = _service(FakeSource(), None, clock)
    with pytest.raises(ValueError):
        await svc.fetch_readings(0)
