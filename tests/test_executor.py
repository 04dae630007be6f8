"""Tests for the step executor.

Covers the three ensure() branches, dry runs, error classification, nonce
management, bounded read fan-out, chunked writes and the owner fallbacks.
"""

import pytest

from chainorch.backends import AddressResolverModel, InMemoryBackend, StorageModel, function_abi
from chainorch.errors import PermanentError, TransientError
from chainorch.executor import StepExecutor, describe_call, normalize_args
from chainorch.nonce import NonceSequencer
from chainorch.owner_actions import InteractiveConfirm, QueueForLater
from chainorch.schemas import Contract, ReadProbe, StepRequest, WriteCall, equals
from chainorch.utils import to_bytes32

OWNER = "0x" + "a" * 40
STRANGER = "0x" + "b" * 40


def set_rate(contract, value=5, public=False):
    return StepRequest(
        contract=contract,
        read=ReadProbe("rate", expected=equals(value)),
        write=WriteCall("setRate", value, publicly_callable=public),
    )


@pytest.fixture
def storage(backend, install):
    model = StorageModel(backend, owner=OWNER)
    return model, install(model, "ExchangeRates", abi=function_abi("setRate", views=("owner", "rate")))


class TestDescribeCall:

    def test_renders_args(self):
        name = to_bytes32("pUSD")
        assert describe_call("Issuer", "addPynth", [name, True, ["0x1", "0x2"]]) == (
            "Issuer.addPynth(pUSD,true,0x1,0x2)"
        )

    def test_no_args(self):
        assert describe_call("DebtCache", "takeDebtSnapshot", []) == "DebtCache.takeDebtSnapshot()"

    def test_normalize_args(self):
        assert normalize_args(None) == []
        assert normalize_args(5) == [5]
        assert normalize_args((1, None, 2)) == [1, 2]


class TestEnsure:

    @pytest.mark.asyncio
    async def test_submits_then_noop(self, backend, executor, storage):
        _, contract = storage
        first = await executor.ensure(set_rate(contract))
        second = await executor.ensure(set_rate(contract))

        assert first.is_submitted
        assert first.id == backend.submissions[0]["id"]
        assert second.is_noop
        assert backend.write_count == 1
        assert executor.stats == {"submitted": 1, "noop": 1}

    @pytest.mark.asyncio
    async def test_no_read_probe_always_writes(self, backend, executor, storage):
        _, contract = storage
        request = StepRequest(contract=contract, write=WriteCall("setRate", 5))
        await executor.ensure(request)
        await executor.ensure(request)
        assert backend.write_count == 2

    @pytest.mark.asyncio
    async def test_gas_limit_passed(self, backend, storage):
        _, contract = storage
        executor = StepExecutor(backend, OWNER, QueueForLater(None), default_gas_limit=250_000)
        await executor.ensure(set_rate(contract))
        assert backend.submissions[0]["gas_limit"] == 250_000

    @pytest.mark.asyncio
    async def test_not_owner_is_queued(self, backend, ledger, stranger_executor, storage):
        _, contract = storage
        outcome = await stranger_executor.ensure(set_rate(contract))

        assert outcome.is_queued
        assert outcome.key == "ExchangeRates.setRate(5)"
        assert backend.submissions == []
        entry = ledger.get("ExchangeRates.setRate(5)")
        assert entry.target == contract.address
        assert entry.action == "setRate(5)"
        assert entry.data == backend.encode_call(contract.address, "setRate", [5])
        assert entry.complete is False

    @pytest.mark.asyncio
    async def test_queueing_twice_keeps_one_entry(self, ledger, stranger_executor, storage):
        _, contract = storage
        await stranger_executor.ensure(set_rate(contract))
        await stranger_executor.ensure(set_rate(contract))
        assert len(ledger) == 1

    @pytest.mark.asyncio
    async def test_public_write_by_stranger(self, backend, stranger_executor, install):
        model = StorageModel(backend, owner=OWNER, public=("setRate",))
        contract = install(model, "ExchangeRates", abi=function_abi("setRate", views=("owner", "rate")))

        outcome = await stranger_executor.ensure(set_rate(contract, public=True))
        assert outcome.is_submitted
        assert backend.submissions[0]["account"] == STRANGER

    @pytest.mark.asyncio
    async def test_contract_without_owner_is_queued(self, backend, executor, install):
        model = StorageModel(backend, owner=OWNER)
        contract = install(model, "Unowned", abi=function_abi("setRate", views=("rate",)))

        outcome = await executor.ensure(set_rate(contract))
        assert outcome.is_queued
        assert backend.submissions == []

    @pytest.mark.asyncio
    async def test_explorer_link(self, backend, ledger, storage):
        _, contract = storage
        executor = StepExecutor(backend, STRANGER, QueueForLater(ledger), explorer_url="https://kovan.etherscan.io/")
        await executor.ensure(set_rate(contract))
        link = ledger.get("ExchangeRates.setRate(5)").link
        assert link == f"https://kovan.etherscan.io/address/{contract.address}#writeContract"


class TestDryRun:

    @pytest.mark.asyncio
    async def test_synthetic_ids(self, backend, ledger, storage):
        _, contract = storage
        executor = StepExecutor(backend, OWNER, QueueForLater(ledger, dry_run=True), dry_run=True)

        first = await executor.ensure(set_rate(contract, 1))
        second = await executor.ensure(set_rate(contract, 2))

        assert first.id == "0x" + "0" * 63 + "1"
        assert second.id == "0x" + "0" * 63 + "2"
        assert backend.submissions == []

    @pytest.mark.asyncio
    async def test_queue_not_persisted(self, backend, ledger, storage):
        _, contract = storage
        executor = StepExecutor(backend, STRANGER, QueueForLater(ledger, dry_run=True), dry_run=True)

        outcome = await executor.ensure(set_rate(contract))
        assert outcome.is_queued
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_still_reads(self, backend, ledger, storage):
        model, contract = storage
        model.values[("rate", ())] = 5
        executor = StepExecutor(backend, OWNER, QueueForLater(ledger, dry_run=True), dry_run=True)

        assert (await executor.ensure(set_rate(contract))).is_noop
        assert backend.reads == 1


class TestFailures:

    @pytest.mark.asyncio
    async def test_read_failure_is_permanent(self, backend, executor, storage):
        _, contract = storage
        backend.failures["rate"] = RuntimeError("execution reverted")

        with pytest.raises(PermanentError, match="ExchangeRates.rate\\(\\)"):
            await executor.ensure(set_rate(contract))
        assert backend.submissions == []

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, backend, executor, storage):
        _, contract = storage
        backend.failures["setRate"] = TimeoutError("no receipt")

        with pytest.raises(TransientError, match="ExchangeRates.setRate\\(5\\)"):
            await executor.ensure(set_rate(contract))

    @pytest.mark.asyncio
    async def test_ensure_all_aborts_on_read_failure(self, backend, executor, storage):
        _, contract = storage
        backend.failures["rate"] = RuntimeError("boom")

        with pytest.raises(PermanentError):
            await executor.ensure_all([set_rate(contract, v) for v in range(3)])
        assert backend.submissions == []


class TestEnsureAll:

    def _contracts(self, backend, install, count):
        return [
            install(
                StorageModel(backend, owner=OWNER),
                f"Store{i}",
                abi=function_abi("setRate", views=("owner", "rate")),
            )
            for i in range(count)
        ]

    @pytest.mark.asyncio
    async def test_outcomes_in_request_order(self, backend, executor, install):
        contracts = self._contracts(backend, install, 4)
        backend.model_at(contracts[1].address).values[("rate", ())] = 5

        outcomes = await executor.ensure_all([set_rate(c) for c in contracts])

        assert [o.kind.value for o in outcomes] == ["submitted", "noop", "submitted", "submitted"]
        assert [s["address"] for s in backend.submissions] == [
            contracts[0].address, contracts[2].address, contracts[3].address,
        ]

    @pytest.mark.asyncio
    async def test_nonces_unique_and_contiguous(self, backend, ledger, install):
        contracts = self._contracts(backend, install, 5)
        executor = StepExecutor(
            backend, OWNER, QueueForLater(ledger),
            nonce_sequencer=NonceSequencer(backend, OWNER),
        )

        outcomes = await executor.ensure_all([set_rate(c) for c in contracts])

        assert all(o.is_submitted for o in outcomes)
        assert sorted(s["nonce"] for s in backend.submissions) == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_read_fan_out_is_bounded(self, ledger):
        backend = InMemoryBackend(latency=0.01)
        contracts = []
        for i in range(10):
            model = StorageModel(backend, owner=OWNER)
            model.values[("rate", ())] = 5
            contracts.append(Contract(
                name=f"Store{i}",
                address=backend.install(model),
                abi=tuple(function_abi("setRate", views=("owner", "rate"))),
            ))
        executor = StepExecutor(backend, OWNER, QueueForLater(ledger), concurrency=3)

        outcomes = await executor.ensure_all([set_rate(c) for c in contracts])

        assert all(o.is_noop for o in outcomes)
        assert backend.max_in_flight == 3


class TestEnsureChunked:

    @pytest.mark.asyncio
    async def test_splits_parallel_lists(self, backend, executor, install):
        registry = AddressResolverModel(backend, owner=OWNER)
        contract = install(registry, "AddressResolver")
        names = [to_bytes32(f"Name{i}") for i in range(5)]
        addresses = ["0x" + str(i + 1) * 40 for i in range(5)]
        request = StepRequest(
            contract=contract,
            read=ReadProbe("areAddressesImported", args=(names, addresses)),
            write=WriteCall("importAddresses", [names, addresses]),
            batch_limit=2,
        )

        outcomes = await executor.ensure_chunked(request)

        assert [o.kind.value for o in outcomes] == ["submitted"] * 3
        assert [len(s["args"][0]) for s in backend.submissions] == [2, 2, 1]
        assert registry.get_address(names[4]) == addresses[4]

        again = await executor.ensure_chunked(request)
        assert all(o.is_noop for o in again)
        assert len(backend.submissions) == 3

    @pytest.mark.asyncio
    async def test_without_limit_is_single_ensure(self, backend, executor, storage):
        _, contract = storage
        outcomes = await executor.ensure_chunked(set_rate(contract))
        assert len(outcomes) == 1

    @pytest.mark.asyncio
    async def test_splits_equality_expectation(self, backend, executor, install, rates_model):
        model = rates_model(backend, owner=OWNER)
        contract = install(model, "ExchangeRates")
        keys = ["pUSD", "sETH", "sBTC", "sEUR", "sJPY"]
        rates = ["1", "2", "3", "4", "5"]
        model.rates.update({"pUSD": "1", "sETH": "2"})
        request = StepRequest(
            contract=contract,
            read=ReadProbe("ratesForCurrencies", args=(keys,), expected=equals(rates)),
            write=WriteCall("setRates", [keys, rates]),
            batch_limit=2,
        )

        outcomes = await executor.ensure_chunked(request)

        assert [o.kind.value for o in outcomes] == ["noop", "submitted", "submitted"]
        assert model.batches == [2, 1]
        assert model.rates_for_currencies(keys) == rates


class TestInteractiveConfirm:

    @pytest.mark.asyncio
    async def test_confirmed_and_applied_is_noop(self, backend, storage):
        model, contract = storage
        lines = []

        def confirm(prompt):
            model.values[("rate", ())] = 5  # owner executed it meanwhile
            return True

        executor = StepExecutor(backend, STRANGER, InteractiveConfirm(confirm=confirm, echo=lines.append))
        outcome = await executor.ensure(set_rate(contract))

        assert outcome.is_noop
        assert lines[0] == "Owner action required: ExchangeRates.setRate(5)"
        assert backend.submissions == []

    @pytest.mark.asyncio
    async def test_declined_is_queued(self, backend, storage):
        _, contract = storage
        fallback = InteractiveConfirm(confirm=lambda prompt: False, echo=lambda line: None)
        executor = StepExecutor(backend, STRANGER, fallback)

        outcome = await executor.ensure(set_rate(contract))
        assert outcome.is_queued

    @pytest.mark.asyncio
    async def test_confirmed_but_not_applied_is_queued(self, backend, storage):
        _, contract = storage
        fallback = InteractiveConfirm(confirm=lambda prompt: True, echo=lambda line: None)
        executor = StepExecutor(backend, STRANGER, fallback)

        outcome = await executor.ensure(set_rate(contract))
        assert outcome.is_queued
        assert outcome.key == "ExchangeRates.setRate(5)"
