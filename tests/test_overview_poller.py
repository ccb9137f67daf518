import pytest

from autoyield.execution.orchestrator import TransferOrchestrator
from autoyield.onchain.session import Session
from autoyield.services.overview_poller import OverviewPoller

WEI = 10**18


@pytest.mark.asyncio
async def test_refresh_stores_latest(ledger, reader, session):
    ledger.vault_balance = 2 * WEI
    poller = OverviewPoller(reader, session=session, interval_seconds=5)
    overview = await poller.refresh()

    assert overview.total_assets == 2 * WEI
    assert poller.latest is overview
    assert poller.refreshed_at is not None
    assert poller.last_error is None


@pytest.mark.asyncio
async def test_refresh_failure_keeps_last_snapshot(ledger, reader, session):
    poller = OverviewPoller(reader, session=session, interval_seconds=5)
    first = await poller.refresh()

    reader.invalidate(session)
    ledger.fail_reads = True
    again = await poller.refresh()

    assert again is first
    assert "node unavailable" in poller.last_error


@pytest.mark.asyncio
async def test_start_and_stop_schedule_job(reader, session):
    poller = OverviewPoller(reader, session=session, interval_seconds=30)
    await poller.start()
    assert poller.scheduler.get_job("overview_poll") is not None
    await poller.stop()


@pytest.mark.asyncio
async def test_disabled_when_interval_zero(reader, session):
    poller = OverviewPoller(reader, session=session, interval_seconds=0)
    assert poller.enabled is False
    await poller.start()
    assert poller.scheduler.running is False


@pytest.mark.asyncio
async def test_confirmed_write_refreshes_snapshot(ledger, wallet, reader, session):
    poller = OverviewPoller(reader, session=Session.from_settings(None, 31337), interval_seconds=30)
    await poller.refresh()
    assert poller.latest.total_assets == 0
    first_refresh = poller.refreshed_at

    surface = TransferOrchestrator(session, wallet, reader, poll_seconds=0)
    surface.confirmation_listeners.append(poller.on_write_confirmed)
    result = await surface.deposit("10")

    assert result.success is True
    assert poller.latest.total_assets == 10 * WEI
    assert poller.refreshed_at >= first_refresh
    assert poller.snapshot()["overview"]["totalAssets"] == str(10 * WEI)


@pytest.mark.asyncio
async def test_failed_write_leaves_snapshot(ledger, wallet, reader, session):
    poller = OverviewPoller(reader, session=Session.from_settings(None, 31337), interval_seconds=30)
    first = await poller.refresh()

    ledger.vault_balance = 5 * WEI
    ledger.revert_labels.add("withdraw")
    surface = TransferOrchestrator(session, wallet, reader, poll_seconds=0)
    surface.confirmation_listeners.append(poller.on_write_confirmed)
    await surface.withdraw("1")

    assert poller.latest is first


def test_write_on_other_chain_is_ignored(reader, session):
    poller = OverviewPoller(reader, session=session, interval_seconds=30)
    poller.refresh_now()
    before = poller.refreshed_at

    poller.on_write_confirmed(Session.from_settings(None, 1))
    assert poller.refreshed_at == before


def test_snapshot_shape(ledger, reader, session):
    poller = OverviewPoller(reader, session=session, interval_seconds=30)
    assert poller.snapshot()["overview"] is None
    assert poller.snapshot()["refreshedAt"] is None

    poller.refresh_now()
    payload = poller.snapshot()
    assert payload["chainId"] == 31337
    assert payload["intervalSeconds"] == 30
    assert payload["refreshedAt"] is not None
    assert payload["overview"]["activeVenue"]["name"] == "Aave V3"
