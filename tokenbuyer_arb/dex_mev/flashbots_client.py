"""
Private relay submission with block-scoped retry semantics.

Every attempt signs the candidate into a one-transaction bundle, targets the
block after the current head, and waits for that block to resolve the bundle:
included, missed, or superseded by a higher account nonce. Missed blocks and
relay failures are retried; a superseded nonce ends the submission at once.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Set

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from ..exceptions import NetworkError, RelayError
from ..metrics import BotMetrics
from .types import CandidateTransaction, Sleep, SubmissionOutcome

logger = logging.getLogger(__name__)


class FlashbotsRelay:
    """JSON-RPC client for a Flashbots-compatible relay."""

    SIGNATURE_HEADER = "X-Flashbots-Signature"

    def __init__(
        self,
        relay_url: str,
        auth_signer: LocalAccount,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_sec: float = 10.0,
    ):
        """
        Args:
            relay_url: Relay endpoint
            auth_signer: Key identifying the searcher to the relay (reputation only)
            session: Shared aiohttp session (created lazily if omitted)
            timeout_sec: Per-request timeout
        """
        self.relay_url = relay_url
        self.auth_signer = auth_signer
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def sign_body(self, body: str) -> str:
        """Value of the relay signature header for a request body."""
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        signed = Account.sign_message(message, private_key=self.auth_signer.key)
        return f"{self.auth_signer.address}:{Web3.to_hex(signed.signature)}"

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        body = json.dumps(
            {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        )
        headers = {
            "Content-Type": "application/json",
            self.SIGNATURE_HEADER: self.sign_body(body),
        }

        session = await self._get_session()
        try:
            async with session.post(self.relay_url, data=body, headers=headers) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RelayError(
                        f"{method} failed with HTTP {response.status}: {text[:200]}",
                        endpoint=self.relay_url,
                        status_code=response.status,
                    )
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RelayError(f"{method} failed: {e}", endpoint=self.relay_url)

        if payload.get("error"):
            error = payload["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise RelayError(
                f"{method} rejected: {message}",
                endpoint=self.relay_url,
                details={"error": error},
            )
        return payload.get("result")

    async def send_bundle(self, signed_transactions: List[str], target_block: int) -> Any:
        """Submit a bundle for inclusion in exactly ``target_block``."""
        return await self._rpc(
            "eth_sendBundle",
            [{"txs": signed_transactions, "blockNumber": hex(target_block)}],
        )

    async def call_bundle(
        self, signed_transactions: List[str], target_block: int, state_block: str = "latest"
    ) -> Dict[str, Any]:
        """Simulate a bundle against ``state_block`` as if mined in ``target_block``."""
        return await self._rpc(
            "eth_callBundle",
            [
                {
                    "txs": signed_transactions,
                    "blockNumber": hex(target_block),
                    "stateBlockNumber": state_block,
                }
            ],
        )


class FlashbotsTransactionClient:
    """
    Signs, submits and resolves candidate transactions through a private relay.

    ``submit_with_retry`` never raises: every failure is logged and reflected in
    the returned SubmissionOutcome.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        signer: LocalAccount,
        relay: FlashbotsRelay,
        retry_delay: float = 0.0,
        poll_interval: float = 1.0,
        max_resolution_polls: int = 120,
        metrics: Optional[BotMetrics] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Args:
            w3: Async web3 connection used for block height, nonce and receipts
            signer: Account that signs the candidate transaction
            relay: Relay client
            retry_delay: Constant delay between submission attempts (seconds)
            poll_interval: Delay between chain polls while awaiting resolution
            max_resolution_polls: Polls before an attempt is abandoned
            metrics: Optional BotMetrics receiving one resolution per attempt
            sleep: Awaitable sleep, replaceable in tests
        """
        self.w3 = w3
        self.signer = signer
        self.relay = relay
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self.max_resolution_polls = max(1, max_resolution_polls)
        self.metrics = metrics
        self._sleep = sleep
        self._background_tasks: Set[asyncio.Task] = set()

    def sign_bundle(self, candidate: CandidateTransaction):
        """Sign the candidate; a fresh signature is produced on every call."""
        return self.signer.sign_transaction(candidate.to_tx_params())

    async def submit(self, candidate: CandidateTransaction) -> SubmissionOutcome:
        """
        Run one submission attempt targeting the next block.

        Raises:
            RelayError: If the relay rejects the bundle or resolution never arrives
        """
        signed = self.sign_bundle(candidate)
        bundle = [Web3.to_hex(signed.raw_transaction)]
        tx_hash = Web3.to_hex(signed.hash)

        current_block = int(await self.w3.eth.block_number)
        target_block = current_block + 1

        result = await self.relay.send_bundle(bundle, target_block)
        logger.info(
            f"BUNDLE_SUBMITTED: {{'tx_hash': '{tx_hash}', 'target_block': {target_block}, "
            f"'nonce': {candidate.nonce}}}"
        )
        logger.debug(f"Relay response: {result}")

        self._start_simulation(bundle, target_block)

        return await self._await_resolution(tx_hash, candidate, target_block)

    async def submit_with_retry(
        self, candidate: CandidateTransaction, max_attempts: Optional[int] = 3
    ) -> SubmissionOutcome:
        """
        Submit until included, superseded, or out of attempts.

        Args:
            candidate: Transaction to land
            max_attempts: Total attempts, None to retry until resolved

        Returns:
            The outcome of the last attempt
        """
        attempt = 0
        outcome = SubmissionOutcome.RELAY_ERROR

        while max_attempts is None or attempt < max_attempts:
            attempt += 1
            budget = "inf" if max_attempts is None else max_attempts
            try:
                outcome = await self.submit(candidate)
            except Exception as e:
                logger.warning(f"Submission attempt {attempt}/{budget} failed: {e}")
                outcome = SubmissionOutcome.RELAY_ERROR

            if self.metrics is not None:
                self.metrics.record_resolution(outcome.value)

            if outcome == SubmissionOutcome.INCLUDED:
                logger.info(f"Bundle included after {attempt} attempt(s)")
                return outcome

            if outcome == SubmissionOutcome.ACCOUNT_NONCE_TOO_HIGH:
                logger.warning(
                    f"Account nonce moved past {candidate.nonce}; abandoning submission"
                )
                return outcome

            if outcome == SubmissionOutcome.BLOCK_PASSED_WITHOUT_INCLUSION:
                logger.info(f"Block passed without inclusion ({attempt}/{budget})")

            if max_attempts is None or attempt < max_attempts:
                await self._sleep(self.retry_delay)

        logger.error(
            f"Submission failed after {attempt} attempt(s), last outcome: {outcome.value}"
        )
        return outcome

    async def _account_nonce(self) -> int:
        return int(await self.w3.eth.get_transaction_count(self.signer.address))

    async def _await_resolution(
        self, tx_hash: str, candidate: CandidateTransaction, target_block: int
    ) -> SubmissionOutcome:
        for _ in range(self.max_resolution_polls):
            # Nonce first: a nonce bump seen below the target block cannot be ours
            nonce = await self._account_nonce()
            block = int(await self.w3.eth.block_number)
            if block >= target_block:
                break
            if nonce > candidate.nonce:
                return SubmissionOutcome.ACCOUNT_NONCE_TOO_HIGH
            await self._sleep(self.poll_interval)
        else:
            raise RelayError(
                f"No resolution for block {target_block} after {self.max_resolution_polls} polls"
            )

        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            receipt = None

        if receipt is not None and int(receipt["blockNumber"]) == target_block:
            return SubmissionOutcome.INCLUDED

        if await self._account_nonce() > candidate.nonce:
            return SubmissionOutcome.ACCOUNT_NONCE_TOO_HIGH
        return SubmissionOutcome.BLOCK_PASSED_WITHOUT_INCLUSION

    # === SIMULATION ===

    def _start_simulation(self, bundle: List[str], target_block: int):
        task = asyncio.create_task(self._simulate(bundle, target_block))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _simulate(self, bundle: List[str], target_block: int):
        """Log the relay's simulation of a submitted bundle; never raises."""
        try:
            result = await self.relay.call_bundle(bundle, target_block)
        except (NetworkError, asyncio.TimeoutError) as e:
            logger.warning(f"Bundle simulation failed: {e}")
            return
        except Exception as e:
            logger.warning(f"Bundle simulation raised unexpectedly: {e}")
            return

        results = (result or {}).get("results") or []
        errors = [r.get("error") or r.get("revert") for r in results]
        errors = [e for e in errors if e]
        if errors:
            logger.warning(f"Bundle simulation for block {target_block} reverted: {errors}")
        else:
            logger.info(
                f"Bundle simulation for block {target_block} ok, "
                f"gas used {(result or {}).get('totalGasUsed')}"
            )

    async def wait_for_simulations(self):
        """Wait for in-flight simulations (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
