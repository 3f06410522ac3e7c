"""
Tests for private relay submission: retry policy, resolution and relay protocol.
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import TransactionNotFound

from tokenbuyer_arb.constants import GWEI, NETWORKS
from tokenbuyer_arb.dex_mev.flashbots_client import FlashbotsRelay, FlashbotsTransactionClient
from tokenbuyer_arb.dex_mev.types import CandidateTransaction, SubmissionOutcome
from tokenbuyer_arb.exceptions import RelayError

TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
AUTH_KEY = "0x" + "22" * 32
RELAY_URL = "https://relay.invalid"

INCLUDED = SubmissionOutcome.INCLUDED
BLOCK_PASSED = SubmissionOutcome.BLOCK_PASSED_WITHOUT_INCLUSION
NONCE_TOO_HIGH = SubmissionOutcome.ACCOUNT_NONCE_TOO_HIGH


class FakeEth:
    """Chain head, account nonce and receipts for one signer."""

    def __init__(self, block=100, nonce=7):
        self.block = block
        self.get_transaction_count = AsyncMock(return_value=nonce)
        self.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("not found"))

    @property
    def block_number(self):
        async def value():
            return self.block

        return value()


@pytest.fixture
def signer():
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def candidate(signer):
    return CandidateTransaction(
        to=to_checksum_address(NETWORKS[1].token_buyer),
        sender=signer.address,
        gas_limit=300_000,
        gas_price=20 * GWEI,
        nonce=7,
        data=b"\x12\x34",
        chain_id=1,
    )


@pytest.fixture
def w3():
    w3 = Mock()
    w3.eth = FakeEth()
    return w3


@pytest.fixture
def relay():
    relay = Mock()
    relay.send_bundle = AsyncMock(return_value={"bundleHash": "0xabc"})
    relay.call_bundle = AsyncMock(return_value={"results": [{"gasUsed": 210000}], "totalGasUsed": 210000})
    return relay


def make_client(w3, signer, relay, **kwargs):
    async def advance_block(delay):
        w3.eth.block += 1

    kwargs.setdefault("sleep", advance_block)
    return FlashbotsTransactionClient(w3, signer, relay, **kwargs)


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_retries_missed_blocks_until_included(self, w3, signer, relay, candidate):
        client = make_client(w3, signer, relay)
        client._await_resolution = AsyncMock(side_effect=[BLOCK_PASSED, BLOCK_PASSED, INCLUDED])

        outcome = await client.submit_with_retry(candidate, max_attempts=3)

        assert outcome == INCLUDED
        assert relay.send_bundle.await_count == 3
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_nonce_too_high_bails_immediately(self, w3, signer, relay, candidate):
        client = make_client(w3, signer, relay)
        client._await_resolution = AsyncMock(return_value=NONCE_TOO_HIGH)

        outcome = await client.submit_with_retry(candidate, max_attempts=10)

        assert outcome == NONCE_TOO_HIGH
        assert relay.send_bundle.await_count == 1
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, w3, signer, relay, candidate):
        client = make_client(w3, signer, relay)
        client._await_resolution = AsyncMock(return_value=BLOCK_PASSED)

        outcome = await client.submit_with_retry(candidate, max_attempts=3)

        assert outcome == BLOCK_PASSED
        assert relay.send_bundle.await_count == 3
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_unbounded_attempts(self, w3, signer, relay, candidate):
        client = make_client(w3, signer, relay)
        client._await_resolution = AsyncMock(side_effect=[BLOCK_PASSED] * 5 + [INCLUDED])

        outcome = await client.submit_with_retry(candidate, max_attempts=None)

        assert outcome == INCLUDED
        assert relay.send_bundle.await_count == 6
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_relay_rejection_counts_as_attempt(self, w3, signer, relay, candidate):
        relay.send_bundle.side_effect = [RelayError("bundle rejected"), {"bundleHash": "0x1"}]
        client = make_client(w3, signer, relay)
        client._await_resolution = AsyncMock(return_value=INCLUDED)

        outcome = await client.submit_with_retry(candidate, max_attempts=3)

        assert outcome == INCLUDED
        assert relay.send_bundle.await_count == 2
        assert client._await_resolution.await_count == 1
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_never_raises(self, w3, signer, relay, candidate):
        relay.send_bundle.side_effect = RuntimeError("unexpected")
        client = make_client(w3, signer, relay)

        outcome = await client.submit_with_retry(candidate, max_attempts=2)

        assert outcome == SubmissionOutcome.RELAY_ERROR
        assert relay.send_bundle.await_count == 2

    @pytest.mark.asyncio
    async def test_bundle_signed_fresh_for_each_attempt(self, w3, signer, relay, candidate):
        client = make_client(w3, signer, relay)
        client.sign_bundle = Mock(wraps=client.sign_bundle)
        client._await_resolution = AsyncMock(side_effect=[BLOCK_PASSED, INCLUDED])

        await client.submit_with_retry(candidate, max_attempts=3)

        assert client.sign_bundle.call_count == 2
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_resolutions_recorded(self, w3, signer, relay, candidate):
        metrics = Mock()
        client = make_client(w3, signer, relay, metrics=metrics)
        client._await_resolution = AsyncMock(side_effect=[BLOCK_PASSED, INCLUDED])

        await client.submit_with_retry(candidate, max_attempts=3)

        recorded = [call.args[0] for call in metrics.record_resolution.call_args_list]
        assert recorded == ["block_passed_without_inclusion", "included"]
        await client.wait_for_simulations()


class TestSubmit:
    @pytest.mark.asyncio
    async def test_targets_next_block_with_signed_transaction(self, w3, signer, relay, candidate):
        client = make_client(w3, signer, relay)
        w3.eth.get_transaction_receipt = AsyncMock(return_value={"blockNumber": 101})

        outcome = await client.submit(candidate)

        assert outcome == INCLUDED
        bundle, target = relay.send_bundle.await_args.args
        assert target == 101
        signed = signer.sign_transaction(candidate.to_tx_params())
        assert bundle == [Web3.to_hex(signed.raw_transaction)]
        await client.wait_for_simulations()
        relay.call_bundle.assert_awaited_once_with(bundle, 101)

    @pytest.mark.asyncio
    async def test_missed_block(self, w3, signer, relay, candidate):
        client = make_client(w3, signer, relay)

        assert await client.submit(candidate) == BLOCK_PASSED
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_receipt_from_other_block_is_not_inclusion(self, w3, signer, relay, candidate):
        client = make_client(w3, signer, relay)
        w3.eth.get_transaction_receipt = AsyncMock(return_value={"blockNumber": 99})

        assert await client.submit(candidate) == BLOCK_PASSED
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_nonce_bump_before_target_block(self, w3, signer, relay, candidate):
        w3.eth.get_transaction_count = AsyncMock(return_value=8)
        client = make_client(w3, signer, relay)

        assert await client.submit(candidate) == NONCE_TOO_HIGH
        # Resolved without waiting for the target block
        assert w3.eth.block == 100
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_nonce_bump_at_target_block(self, w3, signer, relay, candidate):
        w3.eth.get_transaction_count = AsyncMock(side_effect=[7, 7, 8])
        client = make_client(w3, signer, relay)

        assert await client.submit(candidate) == NONCE_TOO_HIGH
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_no_resolution_raises_relay_error(self, w3, signer, relay, candidate):
        async def frozen_chain(delay):
            pass

        client = make_client(w3, signer, relay, sleep=frozen_chain, max_resolution_polls=3)

        with pytest.raises(RelayError):
            await client.submit(candidate)
        await client.wait_for_simulations()


class TestSimulation:
    @pytest.mark.asyncio
    async def test_simulation_failure_is_swallowed(self, w3, signer, relay, candidate):
        relay.call_bundle.side_effect = RelayError("simulation unavailable")
        client = make_client(w3, signer, relay)
        w3.eth.get_transaction_receipt = AsyncMock(return_value={"blockNumber": 101})

        assert await client.submit(candidate) == INCLUDED
        await client.wait_for_simulations()

    @pytest.mark.asyncio
    async def test_simulation_does_not_gate_submission(self, w3, signer, relay, candidate):
        release = asyncio.Event()

        async def slow_simulation(bundle, target):
            await release.wait()
            return {"results": []}

        relay.call_bundle.side_effect = slow_simulation
        client = make_client(w3, signer, relay)
        w3.eth.get_transaction_receipt = AsyncMock(return_value={"blockNumber": 101})

        assert await client.submit(candidate) == INCLUDED
        assert len(client._background_tasks) == 1

        release.set()
        await client.wait_for_simulations()
        await asyncio.sleep(0)
        assert len(client._background_tasks) == 0

    @pytest.mark.asyncio
    async def test_reverting_simulation_only_logs(self, w3, signer, relay, candidate, caplog):
        relay.call_bundle.return_value = {"results": [{"error": "execution reverted"}]}
        client = make_client(w3, signer, relay)

        await client._simulate(["0x00"], 101)

        assert "reverted" in caplog.text


class FakeResponse:
    def __init__(self, status=200, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        return self._payload

    async def text(self):
        return self._text


def fake_session(response):
    session = Mock(closed=False)
    session.post = Mock(return_value=response)
    return session


class TestFlashbotsRelay:
    def test_signature_header_recovers_auth_signer(self):
        auth = Account.from_key(AUTH_KEY)
        relay = FlashbotsRelay(RELAY_URL, auth, session=Mock(closed=False))
        body = '{"jsonrpc":"2.0","id":1,"method":"eth_sendBundle","params":[]}'

        header = relay.sign_body(body)

        address, signature = header.split(":")
        assert address == auth.address
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        assert Account.recover_message(message, signature=signature) == auth.address

    @pytest.mark.asyncio
    async def test_send_bundle_request(self):
        auth = Account.from_key(AUTH_KEY)
        session = fake_session(FakeResponse(payload={"jsonrpc": "2.0", "id": 1, "result": {"bundleHash": "0x1"}}))
        relay = FlashbotsRelay(RELAY_URL, auth, session=session)

        result = await relay.send_bundle(["0xdead"], 101)

        assert result == {"bundleHash": "0x1"}
        args, kwargs = session.post.call_args
        assert args[0] == RELAY_URL
        payload = json.loads(kwargs["data"])
        assert payload["method"] == "eth_sendBundle"
        assert payload["params"] == [{"txs": ["0xdead"], "blockNumber": "0x65"}]
        assert kwargs["headers"][FlashbotsRelay.SIGNATURE_HEADER] == relay.sign_body(kwargs["data"])

    @pytest.mark.asyncio
    async def test_call_bundle_request(self):
        session = fake_session(FakeResponse(payload={"result": {"results": []}}))
        relay = FlashbotsRelay(RELAY_URL, Account.from_key(AUTH_KEY), session=session)

        await relay.call_bundle(["0xdead"], 101)

        payload = json.loads(session.post.call_args.kwargs["data"])
        assert payload["method"] == "eth_callBundle"
        assert payload["params"][0]["stateBlockNumber"] == "latest"

    @pytest.mark.asyncio
    async def test_json_rpc_error(self):
        session = fake_session(FakeResponse(payload={"error": {"code": -32000, "message": "bundle too large"}}))
        relay = FlashbotsRelay(RELAY_URL, Account.from_key(AUTH_KEY), session=session)

        with pytest.raises(RelayError, match="bundle too large"):
            await relay.send_bundle(["0xdead"], 101)

    @pytest.mark.asyncio
    async def test_http_error(self):
        session = fake_session(FakeResponse(status=403, text="forbidden"))
        relay = FlashbotsRelay(RELAY_URL, Account.from_key(AUTH_KEY), session=session)

        with pytest.raises(RelayError) as exc_info:
            await relay.send_bundle(["0xdead"], 101)
        assert exc_info.value.status_code == 403
