import asyncio
import re

import pytest
from solders.keypair import Keypair

from phone_sim.mwa import (
    ApprovalConfig,
    InvalidRequestError,
    RequestNotFoundError,
    TransactionApprovalSimulator,
    TransactionValidationFailedError,
)
from phone_sim.transaction import Transaction, TransactionInstruction

WALLET_ID = "wallet-1"
DAPP = "test.dapp"


@pytest.fixture
def payer():
    return str(Keypair().pubkey())


def request_for(tx, auto_approve=False):
    return TransactionApprovalSimulator.create_approval_request(WALLET_ID, DAPP, tx, auto_approve=auto_approve)


async def wait_until_pending(simulator, count=1):
    for _ in range(100):
        if len(simulator.get_pending_requests()) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError("request never became pending")


def test_request_ids():
    assert re.fullmatch(r"tx_\d+_0_[0-9a-z]{9}", TransactionApprovalSimulator.generate_request_id())
    assert re.fullmatch(r"tx_\d+_4_[0-9a-z]{9}", TransactionApprovalSimulator.generate_request_id(4))
    assert TransactionApprovalSimulator.generate_request_id() != TransactionApprovalSimulator.generate_request_id()


def test_create_request_rejects_invalid_transaction():
    with pytest.raises(TransactionValidationFailedError, match="Invalid transaction"):
        request_for(Transaction())


def test_create_request_keeps_supplied_id(payer, make_transfer):
    request = TransactionApprovalSimulator.create_approval_request(
        WALLET_ID, DAPP, make_transfer(payer), request_id="tx_1_0_abcdefghi"
    )
    assert request.id == "tx_1_0_abcdefghi"
    assert request.metadata.transfer_amount == 1_000_000


@pytest.mark.asyncio
async def test_explicit_auto_approve(payer, make_transfer):
    simulator = TransactionApprovalSimulator(ApprovalConfig(confirmation_delay=10))
    auto = []
    simulator.on("transactionAutoApproved", auto.append)

    result = await simulator.request_approval(request_for(make_transfer(payer), auto_approve=True))

    assert result.approved and result.reason == "Auto-approved"
    assert len(auto) == 1
    assert simulator.get_pending_requests() == []


@pytest.mark.asyncio
async def test_small_transfers_auto_approved_when_enabled(payer, make_transfer):
    simulator = TransactionApprovalSimulator(
        ApprovalConfig(auto_approve_transfers=True, auto_approve_limit=2_000_000, confirmation_delay=10)
    )
    result = await simulator.request_approval(request_for(make_transfer(payer, 2_000_000)))
    assert result.reason == "Auto-approved"


@pytest.mark.asyncio
async def test_transfers_over_limit_are_displayed(payer, make_transfer, fixed_rng):
    simulator = TransactionApprovalSimulator(
        ApprovalConfig(auto_approve_transfers=True, auto_approve_limit=100, confirmation_delay=0.01),
        rng=fixed_rng(0.0),
    )
    displayed = []
    simulator.on("transactionDisplayed", displayed.append)

    result = await simulator.request_approval(request_for(make_transfer(payer, 101)))

    assert result.reason == "User approved"
    assert "TRANSACTION APPROVAL REQUEST" in displayed[0]["display_info"]


@pytest.mark.asyncio
async def test_transfer_limit_wins_over_high_value_threshold(payer, make_transfer, fixed_rng):
    simulator = TransactionApprovalSimulator(
        ApprovalConfig(
            auto_approve_transfers=True,
            auto_approve_limit=2_000_000_000,
            high_value_threshold=1_000_000_000,
            confirmation_delay=0.01,
        ),
        rng=fixed_rng(0.99),
    )
    auto = []
    simulator.on("transactionAutoApproved", auto.append)

    result = await simulator.request_approval(request_for(make_transfer(payer, 1_500_000_000)))

    assert result.approved and result.reason == "Auto-approved"
    assert len(auto) == 1


@pytest.mark.asyncio
async def test_high_value_transfer_over_limit_goes_to_prompt(payer, make_transfer, fixed_rng):
    simulator = TransactionApprovalSimulator(
        ApprovalConfig(auto_approve_transfers=True, auto_approve_limit=1_000_000, confirmation_delay=0.01),
        rng=fixed_rng(0.85),
    )
    auto = []
    simulator.on("transactionAutoApproved", auto.append)

    result = await simulator.request_approval(request_for(make_transfer(payer, 2_000_000_000)))

    assert auto == []
    assert result.reason == "User rejected"


@pytest.mark.asyncio
async def test_simulated_rejection(payer, make_transfer, fixed_rng):
    simulator = TransactionApprovalSimulator(ApprovalConfig(confirmation_delay=0.01), rng=fixed_rng(0.999))
    rejected = []
    simulator.on("transactionRejected", rejected.append)

    result = await simulator.request_approval(request_for(make_transfer(payer)))

    assert not result.approved
    assert result.reason == "User rejected"
    assert rejected[0]["result"] is result


@pytest.mark.asyncio
async def test_risky_transactions_use_lower_approval_rate(payer, make_transfer, fixed_rng):
    simulator = TransactionApprovalSimulator(ApprovalConfig(confirmation_delay=0), rng=fixed_rng(0.9))

    plain = await simulator.request_approval(request_for(make_transfer(payer, 1000)))
    risky_tx = Transaction(fee_payer=payer).add(
        TransactionInstruction(program_id=str(Keypair().pubkey()), keys=[], data=b"")
    )
    risky = await simulator.request_approval(request_for(risky_tx))

    assert plain.approved
    assert not risky.approved


@pytest.mark.asyncio
async def test_manual_approval_wins_over_timer(payer, make_transfer, fixed_rng):
    simulator = TransactionApprovalSimulator(ApprovalConfig(confirmation_delay=30), rng=fixed_rng(0.999))
    request = request_for(make_transfer(payer))

    task = asyncio.create_task(simulator.request_approval(request))
    await wait_until_pending(simulator)
    simulator.approve_request(request.id)
    result = await asyncio.wait_for(task, timeout=1)

    assert result.approved and result.reason == "Manually approved"
    assert request.id not in simulator._timers


@pytest.mark.asyncio
async def test_manual_rejection_from_display_listener(payer, make_transfer):
    simulator = TransactionApprovalSimulator(ApprovalConfig(confirmation_delay=30))
    simulator.on(
        "transactionDisplayed",
        lambda event: simulator.reject_request(event["request"].id, "Looks suspicious"),
    )

    result = await asyncio.wait_for(simulator.request_approval(request_for(make_transfer(payer))), timeout=1)

    assert not result.approved
    assert result.reason == "Looks suspicious"


@pytest.mark.asyncio
async def test_concurrent_requests_resolve_independently(payer, make_transfer):
    simulator = TransactionApprovalSimulator(ApprovalConfig(confirmation_delay=30))
    first, second = request_for(make_transfer(payer, 1)), request_for(make_transfer(payer, 2))

    tasks = [asyncio.create_task(simulator.request_approval(r)) for r in (first, second)]
    await wait_until_pending(simulator, 2)
    simulator.reject_request(second.id)
    simulator.approve_request(first.id)
    first_result, second_result = await asyncio.wait_for(asyncio.gather(*tasks), timeout=1)

    assert first_result.approved
    assert not second_result.approved and second_result.reason == "Manually rejected"


@pytest.mark.asyncio
async def test_resolving_unknown_or_finished_requests(payer, make_transfer):
    simulator = TransactionApprovalSimulator(ApprovalConfig(confirmation_delay=0))
    with pytest.raises(RequestNotFoundError):
        simulator.approve_request("tx_0_0_missing00")

    request = request_for(make_transfer(payer))
    await simulator.request_approval(request)
    with pytest.raises(RequestNotFoundError):
        simulator.reject_request(request.id)


@pytest.mark.asyncio
async def test_duplicate_pending_id_is_rejected(payer, make_transfer):
    simulator = TransactionApprovalSimulator(ApprovalConfig(confirmation_delay=30))
    request = request_for(make_transfer(payer))
    task = asyncio.create_task(simulator.request_approval(request))
    await wait_until_pending(simulator)

    with pytest.raises(InvalidRequestError):
        await simulator.request_approval(request)

    simulator.close()
    result = await asyncio.wait_for(task, timeout=1)
    assert result.reason == "Approval simulator closed"


@pytest.mark.asyncio
async def test_approval_result_event(payer, make_transfer):
    simulator = TransactionApprovalSimulator()
    results = []
    simulator.on("approvalRequested", lambda request: results.append(("requested", request.id)))
    simulator.on("approvalResult", lambda event: results.append(("result", event["request"].id)))

    request = request_for(make_transfer(payer), auto_approve=True)
    await simulator.request_approval(request)

    assert results == [("requested", request.id), ("result", request.id)]


def test_format_request_detail_toggle(payer, make_transfer):
    request = request_for(make_transfer(payer))
    detailed = TransactionApprovalSimulator(ApprovalConfig(show_detailed_info=True)).format_request(request)
    brief = TransactionApprovalSimulator(ApprovalConfig(show_detailed_info=False)).format_request(request)

    assert f"Transaction ID: {request.id}" in detailed
    assert "DETAILED INFORMATION" not in brief
    assert f"dApp: {DAPP}" in brief


def test_update_config():
    simulator = TransactionApprovalSimulator()
    updates = []
    simulator.on("configUpdated", updates.append)

    config = simulator.update_config(auto_approve_transfers=True, auto_approve_limit=5)

    assert config.auto_approve_transfers and config.auto_approve_limit == 5
    assert config.confirmation_delay == 1.0
    assert updates == [config]

    with pytest.raises(ValueError):
        simulator.update_config(confirmation_delay=-1)
