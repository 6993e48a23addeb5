"""
Pact Ledger - On-Chain Transaction Layer

Everything the warden (and the owner tooling) says to the chain goes through
PactLedger. The recovery protocol is split into its three steps so the
executor can drive them as explicit stages:

    simulate_recovery()  -> PreparedTx     (eth_call + gas estimate, no gas spent)
    submit(prepared)     -> tx hash        (nonce + sign + send, serialized)
    wait_for_receipt()   -> TxReceipt      (status 1 = success, 0 = revert)

Design:
- Sync Web3 calls wrapped in run_in_executor() and bounded by asyncio.wait_for()
- Embedded minimal ABI, only the functions we call
- Gas in integer wei everywhere; estimate + GAS_BUFFER_PERCENT, optional price cap
- Nonce allocation + send is the one critical section (asyncio.Lock)
- Failures raise SimulationError / SubmissionError / ConfirmationError with the Pact address
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from .errors import ConfigError, ConfirmationError, LedgerError, SimulationError, SubmissionError
from .pact import PactDetails, normalize_address
from .rules import WARDEN_RULES, WardenConfig

logger = logging.getLogger("warden.chain")


# ============================================================
# MINIMAL ABI - only functions we call at runtime
# ============================================================

PACT_ABI = [
    # recoverAssets() - callable by anyone once expired, reverts otherwise
    {
        "inputs": [],
        "name": "recoverAssets",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    # checkIn() - owner only, resets lastCheckIn
    {
        "inputs": [],
        "name": "checkIn",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "checkInInterval",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "lastCheckIn",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "protectedToken",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "warden",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [{"indexed": False, "name": "timestamp", "type": "uint256"}],
        "name": "CheckedIn",
        "type": "event",
    },
]

FACTORY_ABI = [
    # createPact(beneficiary, intervalSeconds, protectedToken) -> pact address
    {
        "inputs": [
            {"name": "_beneficiary", "type": "address"},
            {"name": "_checkInInterval", "type": "uint256"},
            {"name": "_protectedToken", "type": "address"},
        ],
        "name": "createPact",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "owner", "type": "address"},
            {"indexed": True, "name": "pactAddress", "type": "address"},
            {"indexed": False, "name": "beneficiary", "type": "address"},
        ],
        "name": "PactCreated",
        "type": "event",
    },
]


# ============================================================
# GAS UNITS
# ============================================================

def to_wei(value: Any, field_name: str = "gas price") -> int:
    """
    Validate a wei amount at the boundary.

    Only ints (or decimal strings of ints) are accepted. Anything that would
    need a guess about units (floats, gwei-looking decimals) is rejected.
    """
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: bool is not a wei amount")
    if isinstance(value, int):
        wei = value
    elif isinstance(value, str) and value.strip().isdigit():
        wei = int(value.strip())
    else:
        raise ValueError(f"{field_name}: expected integer wei, got {value!r}")
    if wei < 0:
        raise ValueError(f"{field_name}: negative wei {wei}")
    return wei


def buffered_gas(estimate: int) -> int:
    """Gas estimate + GAS_BUFFER_PERCENT, integer math only."""
    return estimate + (estimate * WARDEN_RULES.GAS_BUFFER_PERCENT) // 100


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass(frozen=True)
class PreparedTx:
    """Output of a successful simulation: the exact transaction to submit (minus nonce)."""
    pact_id: str
    tx: dict
    gas: int
    gas_price_wei: int


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    gas_used: int = 0
    effective_gas_price_wei: int = 0
    block_number: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @property
    def gas_cost_wei(self) -> int:
        return self.gas_used * self.effective_gas_price_wei


@dataclass
class ChainTxResult:
    """Result of an owner-side transaction (createPact / checkIn)."""
    success: bool
    tx_hash: str = ""
    error: str = ""
    gas_used: int = 0
    pact_address: str = ""


# ============================================================
# LEDGER
# ============================================================

class PactLedger:
    """
    web3 gateway for one signing identity.

    Usage:
        ledger = PactLedger.connect(config)
        prepared = await ledger.simulate_recovery(pact_id)
        tx_hash = await ledger.submit(prepared)
        receipt = await ledger.wait_for_receipt(tx_hash, pact_id)
    """

    def __init__(
        self,
        w3: Web3,
        private_key: str,
        chain_id: int,
        rpc_timeout_seconds: float = WARDEN_RULES.DEFAULT_RPC_TIMEOUT_SECONDS,
        receipt_timeout_seconds: float = WARDEN_RULES.DEFAULT_RECEIPT_TIMEOUT_SECONDS,
        max_gas_price_wei: int = 0,
    ):
        try:
            account = Account.from_key(private_key)
        except Exception as e:
            # Never echo the key itself
            raise ConfigError(f"Invalid private key: {type(e).__name__}") from e

        self._w3 = w3
        self._private_key = private_key
        self._address: str = account.address
        self.chain_id = chain_id
        self.rpc_timeout_seconds = rpc_timeout_seconds
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.max_gas_price_wei = to_wei(max_gas_price_wei, "max gas price")
        self._nonce_lock = asyncio.Lock()

        self._tx_count: int = 0
        self._last_error: str = ""

    @classmethod
    def connect(cls, config: WardenConfig) -> "PactLedger":
        """Build the ledger from config. Raises ConfigError on a bad key."""
        w3 = Web3(Web3.HTTPProvider(
            config.rpc_url,
            request_kwargs={"timeout": config.rpc_timeout_seconds},
        ))
        ledger = cls(
            w3,
            config.private_key,
            chain_id=config.chain_id,
            rpc_timeout_seconds=config.rpc_timeout_seconds,
            receipt_timeout_seconds=config.receipt_timeout_seconds,
            max_gas_price_wei=config.max_gas_price_wei,
        )
        logger.info(
            f"Ledger ready: chain_id={config.chain_id} | rpc={config.rpc_url} | "
            f"warden={ledger.address}"
        )
        return ledger

    @property
    def address(self) -> str:
        return self._address

    def _pact(self, pact_id: str):
        return self._w3.eth.contract(address=Web3.to_checksum_address(pact_id), abi=PACT_ABI)

    def _factory(self, factory_address: str):
        return self._w3.eth.contract(address=Web3.to_checksum_address(factory_address), abi=FACTORY_ABI)

    async def _run(self, fn: Callable[[], Any], timeout: Optional[float] = None) -> Any:
        """Run a blocking web3 call off the event loop, bounded by a timeout."""
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, fn),
            timeout=timeout or self.rpc_timeout_seconds,
        )

    # ============================================================
    # RECOVERY PROTOCOL
    # ============================================================

    async def simulate_recovery(self, pact_id: str) -> PreparedTx:
        """
        Dry-run recoverAssets() from the warden's address.

        Raises:
            SimulationError: the call would revert (already recovered, not expired,
                permission), gas price above the cap, or the node is unreachable
        """
        contract = self._pact(pact_id)
        fn = contract.functions.recoverAssets()

        def _simulate():
            # eth_call surfaces the revert reason without spending gas
            fn.call({"from": self._address})
            gas_price = to_wei(self._w3.eth.gas_price)
            tx = fn.build_transaction({
                "from": self._address,
                "chainId": self.chain_id,
                "gasPrice": gas_price,
                "gas": WARDEN_RULES.FALLBACK_GAS_LIMIT,
                "nonce": 0,
            })
            try:
                gas = buffered_gas(self._w3.eth.estimate_gas({
                    "from": self._address,
                    "to": tx["to"],
                    "data": tx["data"],
                }))
            except ContractLogicError:
                raise
            except Exception as gas_err:
                logger.warning(
                    f"Gas estimation failed for {pact_id}, using default "
                    f"{WARDEN_RULES.FALLBACK_GAS_LIMIT}: {gas_err}"
                )
                gas = WARDEN_RULES.FALLBACK_GAS_LIMIT
            tx["gas"] = gas
            tx.pop("nonce", None)
            return tx, gas, gas_price

        try:
            tx, gas, gas_price = await self._run(_simulate)
        except ContractLogicError as e:
            raise SimulationError(f"recoverAssets() would revert: {e}", pact_id) from e
        except asyncio.TimeoutError as e:
            raise SimulationError(
                f"simulation timed out after {self.rpc_timeout_seconds}s", pact_id
            ) from e
        except Exception as e:
            raise SimulationError(f"{type(e).__name__}: {e}", pact_id) from e

        if self.max_gas_price_wei and gas_price > self.max_gas_price_wei:
            raise SimulationError(
                f"gas price {gas_price} wei above cap {self.max_gas_price_wei} wei", pact_id
            )

        return PreparedTx(pact_id=pact_id, tx=tx, gas=gas, gas_price_wei=gas_price)

    async def submit(self, prepared: PreparedTx) -> str:
        """
        Sign and send a prepared transaction. Returns the tx hash (0x-hex).

        Raises:
            SubmissionError: nonce conflict, rejection, network error, timeout
        """
        async with self._nonce_lock:
            def _send():
                tx = dict(prepared.tx)
                tx["nonce"] = self._w3.eth.get_transaction_count(self._address, "pending")
                signed = self._w3.eth.account.sign_transaction(tx, self._private_key)
                return self._w3.eth.send_raw_transaction(signed.raw_transaction)

            try:
                tx_hash = await self._run(_send)
            except asyncio.TimeoutError as e:
                self._last_error = f"submit timeout for {prepared.pact_id}"
                raise SubmissionError(
                    f"submission timed out after {self.rpc_timeout_seconds}s", prepared.pact_id
                ) from e
            except Exception as e:
                self._last_error = f"{type(e).__name__}: {e}"
                raise SubmissionError(self._last_error, prepared.pact_id) from e

        self._tx_count += 1
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, pact_id: Optional[str] = None) -> TxReceipt:
        """
        Wait for the receipt. A reverted receipt is returned (status 0), not raised.

        Raises:
            ConfirmationError: no receipt within the timeout, or the node failed
        """
        timeout = self.receipt_timeout_seconds

        def _wait():
            return self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)

        try:
            # Outer bound slightly above web3's own polling timeout
            receipt = await self._run(_wait, timeout=timeout + self.rpc_timeout_seconds)
        except (TimeExhausted, asyncio.TimeoutError) as e:
            raise ConfirmationError(f"no receipt for {tx_hash} after {timeout}s", pact_id) from e
        except Exception as e:
            raise ConfirmationError(f"{type(e).__name__}: {e}", pact_id) from e

        return TxReceipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            gas_used=int(receipt.get("gasUsed", 0)),
            effective_gas_price_wei=int(receipt.get("effectiveGasPrice", 0) or 0),
            block_number=int(receipt.get("blockNumber", 0) or 0),
        )

    # ============================================================
    # PACT READS (enrichment)
    # ============================================================

    async def read_pact_details(self, pact_id: str) -> PactDetails:
        """Read checkInInterval / protectedToken / warden from the Pact contract."""
        contract = self._pact(pact_id)

        def _read():
            return (
                contract.functions.checkInInterval().call(),
                contract.functions.protectedToken().call(),
                contract.functions.warden().call(),
            )

        try:
            interval, token, warden = await self._run(_read)
        except Exception as e:
            raise LedgerError(f"detail read failed: {type(e).__name__}: {e}", pact_id) from e

        return PactDetails(
            pact_address=normalize_address(pact_id),
            check_in_interval=int(interval),
            protected_token=normalize_address(token),
            warden=normalize_address(warden),
        )

    async def read_last_check_in(self, pact_id: str) -> int:
        contract = self._pact(pact_id)
        try:
            return int(await self._run(contract.functions.lastCheckIn().call))
        except Exception as e:
            raise LedgerError(f"lastCheckIn read failed: {type(e).__name__}: {e}", pact_id) from e

    # ============================================================
    # OWNER WRITES - used by scripts/pact_admin.py
    # ============================================================

    async def _send_owner_tx(self, tx_fn, label: str) -> tuple[ChainTxResult, Any]:
        """Simulate, sign, send and confirm an owner-side call. Never raises; failures land in the result."""
        try:
            def _simulate():
                result = tx_fn.call({"from": self._address})
                gas_price = to_wei(self._w3.eth.gas_price)
                tx = tx_fn.build_transaction({
                    "from": self._address,
                    "chainId": self.chain_id,
                    "gasPrice": gas_price,
                })
                tx["gas"] = buffered_gas(int(tx["gas"]))
                tx.pop("nonce", None)
                return result, tx, gas_price

            simulated, tx, gas_price = await self._run(_simulate)
            prepared = PreparedTx(pact_id="", tx=tx, gas=tx["gas"], gas_price_wei=gas_price)
            tx_hash = await self.submit(prepared)
            logger.info(f"{label}: transaction sent {tx_hash}")
            receipt = await self.wait_for_receipt(tx_hash)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning(f"{label} failed: {error}")
            self._last_error = error
            return ChainTxResult(success=False, error=error), None

        if not receipt.succeeded:
            return ChainTxResult(
                success=False, tx_hash=tx_hash, error=f"TX reverted: {tx_hash}",
                gas_used=receipt.gas_used,
            ), simulated
        return ChainTxResult(success=True, tx_hash=tx_hash, gas_used=receipt.gas_used), simulated

    async def check_in(self, pact_id: str) -> ChainTxResult:
        """Owner check-in. The indexer mirrors it once CheckedIn is observed."""
        result, _ = await self._send_owner_tx(self._pact(pact_id).functions.checkIn(), f"checkIn({pact_id})")
        result.pact_address = normalize_address(pact_id)
        return result

    async def create_pact(
        self,
        factory_address: str,
        beneficiary: str,
        interval_seconds: int,
        protected_token: str,
    ) -> ChainTxResult:
        """Deploy a new Pact through the factory. Emits PactCreated."""
        if interval_seconds <= 0:
            return ChainTxResult(success=False, error="interval must be positive")

        factory = self._factory(factory_address)
        tx_fn = factory.functions.createPact(
            Web3.to_checksum_address(beneficiary),
            int(interval_seconds),
            Web3.to_checksum_address(protected_token),
        )
        result, simulated_address = await self._send_owner_tx(tx_fn, "createPact")
        if not result.success:
            return result

        pact_address = ""
        try:
            receipt = await self._run(lambda: self._w3.eth.get_transaction_receipt(result.tx_hash))
            events = factory.events.PactCreated().process_receipt(receipt)
            if events:
                pact_address = events[0]["args"]["pactAddress"]
        except Exception as e:
            logger.warning(f"Could not decode PactCreated from {result.tx_hash}: {e}")
        # Fall back to the address returned by the dry run
        result.pact_address = normalize_address(pact_address or simulated_address or "")
        return result

    # ============================================================
    # STATUS
    # ============================================================

    def get_status(self) -> dict:
        return {
            "warden_address": self._address,
            "chain_id": self.chain_id,
            "tx_count": self._tx_count,
            "last_error": self._last_error,
        }
