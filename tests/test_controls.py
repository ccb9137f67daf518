from dataclasses import replace

import pytest

from autoyield.errors import InvalidRate, TestControlsDisabled, ValidationError
from autoyield.execution.controls import ManualControls, validate_apy_percent
from autoyield.execution.surface import SurfaceState


def _controls(session, wallet, reader):
    return ManualControls(session, wallet, reader, poll_seconds=0)


def test_validate_apy_percent_rounds_to_bps():
    assert validate_apy_percent(5.25) == 525
    assert validate_apy_percent("0") == 0
    assert validate_apy_percent("100") == 10000


@pytest.mark.parametrize("value", [-1, "-0.01", 100.01, "nan", "abc"])
def test_validate_apy_percent_rejects_out_of_range(value):
    with pytest.raises(InvalidRate):
        validate_apy_percent(value)


@pytest.mark.asyncio
async def test_set_apy_submits_basis_points(ledger, wallet, reader, session):
    controls = _controls(session, wallet, reader)
    result = await controls.set_test_venue_apy("aave", 5.25)

    assert result.success is True
    assert result.action == "setAPY"
    assert ledger.sent == [("setAPY", (525,))]
    assert controls.state == SurfaceState.IDLE


@pytest.mark.asyncio
async def test_negative_apy_rejected_without_submission(ledger, wallet, reader, session):
    controls = _controls(session, wallet, reader)
    with pytest.raises(InvalidRate):
        await controls.set_test_venue_apy("compound", -1)
    assert ledger.sent == []


@pytest.mark.asyncio
async def test_unknown_venue_rejected(ledger, wallet, reader, session):
    controls = _controls(session, wallet, reader)
    with pytest.raises(ValidationError):
        await controls.set_test_venue_apy("uniswap", 3)
    assert ledger.sent == []


@pytest.mark.asyncio
async def test_set_apy_requires_test_controls(ledger, wallet, reader, session):
    controls = _controls(replace(session, test_controls_enabled=False), wallet, reader)
    with pytest.raises(TestControlsDisabled):
        await controls.set_test_venue_apy("aave", 4)
    assert ledger.sent == []


@pytest.mark.asyncio
async def test_manual_rebalance_submits_without_precheck(ledger, wallet, reader, session):
    controls = _controls(session, wallet, reader)
    result = await controls.trigger_manual_rebalance()

    assert result.success is True
    assert ledger.sent == [("manualRebalance", ())]
    assert ledger.reads.count("getCurrentProtocolInfo") == 0


@pytest.mark.asyncio
async def test_manual_rebalance_revert_reported(ledger, wallet, reader, session):
    ledger.revert_labels.add("manualRebalance")
    controls = _controls(session, wallet, reader)
    result = await controls.trigger_manual_rebalance()

    assert result.success is False
    assert result.state == SurfaceState.FAILED
    assert "Transaction reverted" in result.error
