import pytest
from web3.exceptions import ContractLogicError

from autoyield.onchain.session import Session
from autoyield.onchain.vault_reader import VaultReader

WALLET_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
WEI = 10**18


class DummyCall:
    def __init__(self, ledger, name, args):
        self.ledger = ledger
        self.name = name
        self.args = args

    def call(self):
        return self.ledger.read(self.name, self.args)


class DummyFunctions:
    def __init__(self, ledger):
        self._ledger = ledger

    def __getattr__(self, name):
        def _bind(*args):
            return DummyCall(self._ledger, name, args)

        return _bind


class DummyContract:
    def __init__(self, ledger, address):
        self.address = address
        self.functions = DummyFunctions(ledger)


class DummyEth:
    def __init__(self, ledger):
        self._ledger = ledger

    def contract(self, address=None, abi=None):
        return DummyContract(self._ledger, address)

    def get_transaction_receipt(self, tx_hash):
        return self._ledger.receipt(tx_hash)

    def get_transaction(self, tx_hash):
        return self._ledger.transaction(tx_hash)

    def call(self, transaction, block_identifier=None):
        reason = self._ledger.revert_reasons.get(transaction["data"])
        if reason:
            raise ContractLogicError(f"execution reverted: {reason}")
        return b""


class DummyWeb3:
    def __init__(self, ledger):
        self.eth = DummyEth(ledger)


class FakeLedger:
    """In-memory token + vault state driven by the writes a surface submits."""

    def __init__(self, token_balance=100 * WEI, vault_balance=0, allowance=0):
        self.token_balance = token_balance
        self.vault_balance = vault_balance
        self.allowance = allowance
        self.sent = []
        self.reads = []
        self.revert_labels = set()
        self.revert_reasons = {}
        self.hold = False
        self.fail_reads = False
        self._receipts = {}
        self._transactions = {}
        self.web3 = DummyWeb3(self)

    def read(self, name, args):
        self.reads.append(name)
        if self.fail_reads:
            raise RuntimeError("node unavailable")
        if name == "balanceOf":
            return self.token_balance
        if name == "getBalance":
            return self.vault_balance
        if name == "allowance":
            return self.allowance
        if name == "totalAssets":
            return self.vault_balance
        if name == "totalSupply":
            return self.token_balance + self.vault_balance
        if name == "getCurrentProtocolInfo":
            return ("Aave V3", 520, self.vault_balance)
        if name == "getProtocolAPYs":
            return (520, 480)
        raise AttributeError(name)

    def submit(self, call):
        self.sent.append((call.name, call.args))
        tx_hash = "0x" + f"{len(self.sent):064x}"
        # Calldata is the function name; revert_reasons is keyed on it.
        self._transactions[tx_hash] = {"to": call.name, "from": WALLET_ADDRESS, "input": call.name, "value": 0}
        if call.name in self.revert_labels:
            self._receipts[tx_hash] = {"status": 0, "gasUsed": 21000}
            return tx_hash
        self._apply(call.name, call.args)
        self._receipts[tx_hash] = {"status": 1, "gasUsed": 21000}
        return tx_hash

    def _apply(self, name, args):
        if name == "approve":
            self.allowance = args[1]
        elif name == "deposit":
            self.token_balance -= args[0]
            self.vault_balance += args[0]
            self.allowance -= args[0]
        elif name == "withdraw":
            self.vault_balance -= args[0]
            self.token_balance += args[0]
        elif name == "mint":
            self.token_balance += args[1]

    def transaction(self, tx_hash):
        return self._transactions[tx_hash]

    def receipt(self, tx_hash):
        if self.hold:
            return None
        return self._receipts.get(tx_hash)


class FakeWallet:
    def __init__(self, ledger, fail_with=None):
        self.ledger = ledger
        self.web3 = ledger.web3
        self.address = WALLET_ADDRESS
        self.fail_with = fail_with

    def send_transaction(self, contract_call, chain_id=None):
        if self.fail_with is not None:
            raise self.fail_with
        return self.ledger.submit(contract_call)


@pytest.fixture()
def ledger():
    return FakeLedger()


@pytest.fixture()
def wallet(ledger):
    return FakeWallet(ledger)


@pytest.fixture()
def reader(ledger):
    return VaultReader(ledger.web3, cache_ttl=300, max_retries=0)


@pytest.fixture()
def session():
    return Session.from_settings(WALLET_ADDRESS, 31337)
