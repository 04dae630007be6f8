"""Tests for environment manifest loading and reference resolution."""

import json

import pytest

from chainorch.errors import ManifestError
from chainorch.manifest import (
    ConfigStep,
    build_expectation,
    load_manifest,
    load_params,
    resolve_refs,
)
from chainorch.schemas import Contract
from chainorch.stores import InMemoryResourceConfigStore

ACCOUNT = "0x" + "a" * 40


def _write(path, data):
    path.write_text(json.dumps(data))


@pytest.fixture
def env_dir(tmp_path):
    directory = tmp_path / "kovan"
    directory.mkdir()
    _write(directory / "resources.json", [
        {"name": "AddressResolver", "args": ["@account"]},
        {"name": "Issuer", "args": ["@account", "@deployed.AddressResolver"]},
        {"name": "SafeDecimalMath", "library": True},
    ])
    _write(directory / "params.json", [
        {"name": "ISSUANCE_RATIO", "value": "0.2"},
        {"name": "FEES", "value": {"exchange": {"pUSD": "0.003"}}},
    ])
    return directory


class TestResolveRefs:

    def test_deployed_account_and_param(self):
        addresses = {"AddressResolver": "0x1"}
        params = {"FEES": {"exchange": {"pUSD": "0.003"}}}
        value = ["@deployed.AddressResolver", "@account", "@param.FEES.exchange.pUSD", 7]
        assert resolve_refs(value, addresses, ACCOUNT, params) == ["0x1", ACCOUNT, "0.003", 7]

    def test_nested_dicts(self):
        result = resolve_refs({"owner": "@account"}, {}, ACCOUNT, {})
        assert result == {"owner": ACCOUNT}

    def test_plain_strings_untouched(self):
        assert resolve_refs("@@literal", {}, None, {}) == "@@literal"
        assert resolve_refs("pUSD", {}, None, {}) == "pUSD"

    def test_unknown_deployed(self):
        with pytest.raises(ManifestError, match="unknown resource: Nope"):
            resolve_refs("@deployed.Nope", {}, ACCOUNT, {})

    def test_unknown_param_path(self):
        with pytest.raises(ManifestError, match="missing 'sETH'"):
            resolve_refs("@param.FEES.sETH", {}, ACCOUNT, {"FEES": {"pUSD": 1}})

    def test_account_required(self):
        with pytest.raises(ManifestError, match="no account"):
            resolve_refs("@account", {}, None, {})


class TestLoadManifest:

    def test_loads_resources_params_and_steps(self, env_dir):
        store = InMemoryResourceConfigStore({"Issuer": {"deploy": True}, "AddressResolver": {"deploy": False}})
        manifest = load_manifest(env_dir, store)

        assert [s.name for s in manifest.resources] == ["AddressResolver", "Issuer", "SafeDecimalMath"]
        deploy_flags = {s.name: s.deploy for s in manifest.resources}
        assert deploy_flags == {"AddressResolver": False, "Issuer": True, "SafeDecimalMath": None}
        assert manifest.resources[1].dependencies == frozenset({"AddressResolver"})
        assert manifest.params["ISSUANCE_RATIO"] == "0.2"
        assert manifest.steps == []

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ManifestError, match="not found"):
            load_manifest(tmp_path / "nope", InMemoryResourceConfigStore())

    def test_missing_resources(self, tmp_path):
        with pytest.raises(ManifestError, match="resources.json"):
            load_manifest(tmp_path, InMemoryResourceConfigStore())

    def test_resources_must_be_list(self, tmp_path):
        _write(tmp_path / "resources.json", {"name": "A"})
        with pytest.raises(ManifestError, match="expected a list"):
            load_manifest(tmp_path, InMemoryResourceConfigStore())

    def test_self_reference_is_manifest_error(self, tmp_path):
        _write(tmp_path / "resources.json", [{"name": "A", "args": ["@deployed.A"]}])
        with pytest.raises(ManifestError, match="itself"):
            load_manifest(tmp_path, InMemoryResourceConfigStore())

    def test_params_need_names(self, tmp_path):
        _write(tmp_path / "params.json", [{"value": 1}])
        with pytest.raises(ManifestError):
            load_params(tmp_path)


class TestConfigStep:

    @pytest.fixture
    def contracts(self):
        return {
            "Issuer": Contract(name="Issuer", address="0x" + "1" * 40),
            "AddressResolver": Contract(name="AddressResolver", address="0x" + "2" * 40),
        }

    def test_from_dict_requires_contract_and_write(self):
        with pytest.raises(ManifestError, match="write"):
            ConfigStep.from_dict({"contract": "Issuer"})

    def test_read_defaults_to_single_write_arg(self, contracts):
        step = ConfigStep.from_dict({
            "contract": "Issuer",
            "write": "setResolver",
            "write_args": ["@deployed.AddressResolver"],
            "read": "resolver",
        })
        request = step.to_request(contracts, ACCOUNT, {})

        assert request.contract is contracts["Issuer"]
        assert request.write.args == ["0x" + "2" * 40]
        assert request.read.function == "resolver"
        assert request.read.satisfied_by("0x" + "2" * 40)
        assert not request.read.satisfied_by("0x" + "0" * 40)

    def test_explicit_expected(self, contracts):
        step = ConfigStep.from_dict({
            "contract": "Issuer",
            "write": "setIssuanceRatio",
            "write_args": ["@param.RATIO"],
            "read": "issuanceRatio",
            "expected": {"not": "0"},
            "public": True,
            "gas_limit": 100000,
        })
        request = step.to_request(contracts, ACCOUNT, {"RATIO": "2"})

        assert request.write.publicly_callable is True
        assert request.write.gas_limit == 100000
        assert request.read.satisfied_by("2")
        assert not request.read.satisfied_by("0")

    def test_no_read(self, contracts):
        request = ConfigStep(contract="Issuer", write="rebuildCache").to_request(contracts, ACCOUNT, {})
        assert request.read is None

    def test_unknown_contract(self, contracts):
        with pytest.raises(ManifestError, match="unknown resource"):
            ConfigStep(contract="Nope", write="f").to_request(contracts, ACCOUNT, {})

    def test_batch_limit_carried_to_request(self, contracts):
        step = ConfigStep.from_dict({
            "contract": "Issuer",
            "write": "setRates",
            "write_args": [["pUSD", "sETH"], "@param.RATES"],
            "read": "ratesForCurrencies",
            "read_args": [["pUSD", "sETH"]],
            "expected": "@param.RATES",
            "batch_limit": 1,
        })
        request = step.to_request(contracts, ACCOUNT, {"RATES": ["1", "2"]})

        assert step.batch_limit == 1
        assert request.batch_limit == 1
        assert request.write.args == [["pUSD", "sETH"], ["1", "2"]]
        assert request.read.expected.expected == ["1", "2"]

    @pytest.mark.parametrize("limit", [0, -1, "2", 1.5])
    def test_batch_limit_must_be_positive_integer(self, limit):
        with pytest.raises(ManifestError, match="batch_limit"):
            ConfigStep.from_dict({"contract": "Issuer", "write": "setRates", "batch_limit": limit})


class TestBuildExpectation:

    def test_truthy(self):
        predicate = build_expectation({"truthy": True}, lambda v: v)
        assert predicate(1) and not predicate(0)

    def test_equality_resolves(self):
        predicate = build_expectation("@account", lambda v: ACCOUNT if v == "@account" else v)
        assert predicate(ACCOUNT.upper().replace("0X", "0x"))
