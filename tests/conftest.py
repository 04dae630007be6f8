import pytest

from chainorch.backends import ContractModel, InMemoryBackend
from chainorch.executor import StepExecutor
from chainorch.owner_actions import QueueForLater
from chainorch.schemas import Contract
from chainorch.stores import InMemoryPendingActionLedger


OWNER = "0x" + "a" * 40
STRANGER = "0x" + "b" * 40


class KeyedRatesModel(ContractModel):
    """Batched getter/setter: ratesForCurrencies(keys) reads what setRates(keys, rates) wrote."""

    VIEWS = ("owner", "ratesForCurrencies")
    OWNER_WRITES = ("setRates",)

    def __init__(self, chain, owner):
        super().__init__(chain, owner)
        self.rates = {}
        self.batches = []

    def rates_for_currencies(self, keys):
        return [self.rates.get(key, "0") for key in keys]

    def set_rates(self, keys, rates):
        self.batches.append(len(keys))
        self.rates.update(zip(keys, rates))


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def ledger():
    return InMemoryPendingActionLedger()


@pytest.fixture
def install(backend):
    """Place a model on the in-memory chain and return its Contract handle."""

    def _install(model, name, abi=None):
        address = backend.install(model)
        return Contract(
            name=name,
            address=address,
            abi=tuple(abi if abi is not None else model.interface()),
            source=name,
        )

    return _install


@pytest.fixture
def executor(backend, ledger):
    return StepExecutor(backend, OWNER, QueueForLater(ledger))


@pytest.fixture
def stranger_executor(backend, ledger):
    return StepExecutor(backend, STRANGER, QueueForLater(ledger))


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path):
    # Never read the developer's real config
    monkeypatch.setenv("CHAINORCH_HOME", str(tmp_path / "chainorch_home"))
    monkeypatch.delenv("CHAINORCH_ACCOUNT", raising=False)
    monkeypatch.delenv("CHAINORCH_PROVIDER_URL", raising=False)


@pytest.fixture
def rates_model():
    return KeyedRatesModel
