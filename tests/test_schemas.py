"""Tests for chainorch schemas."""

from datetime import datetime, timezone

import pytest

from chainorch.schemas import (
    Artifact,
    Contract,
    DeploymentRecord,
    Equals,
    OutcomeKind,
    PendingAction,
    ReadProbe,
    ResourceSpec,
    StepOutcome,
    StepRequest,
    Target,
    WriteCall,
    differs_from,
    equals,
    truthy,
)


class TestResourceSpec:

    def test_from_dict(self):
        spec = ResourceSpec.from_dict(
            {
                "name": "ProxyERC20",
                "source": "Proxy",
                "args": ["@account"],
                "deps": ["AddressResolver"],
                "force": True,
            },
            deploy=True,
        )
        assert spec.artifact_name == "Proxy"
        assert spec.constructor_args == ("@account",)
        assert spec.dependencies == frozenset({"AddressResolver"})
        assert spec.force_redeploy is True
        assert spec.deploy is True
        assert spec.library is False

    def test_source_defaults_to_name(self):
        spec = ResourceSpec.from_dict({"name": "SafeDecimalMath", "library": True})
        assert spec.artifact_name == "SafeDecimalMath"
        assert spec.library is True
        assert spec.deploy is None

    def test_implicit_dependencies_merged(self):
        spec = ResourceSpec(
            name="Issuer",
            artifact_name="Issuer",
            constructor_args=("@account", ["@deployed.AddressResolver"]),
        )
        assert spec.dependencies == frozenset({"AddressResolver"})

    def test_to_dict(self):
        spec = ResourceSpec(name="A", artifact_name="B", constructor_args=("@deployed.C",))
        assert spec.to_dict() == {"name": "A", "source": "B", "args": ["@deployed.C"], "deps": ["C"]}

    def test_requires_name(self):
        with pytest.raises(ValueError):
            ResourceSpec(name="", artifact_name="X")


class TestContract:

    def test_function_names_ignore_events(self):
        contract = Contract(
            name="Issuer",
            address="0x1",
            abi=(
                {"type": "function", "name": "rebuildCache"},
                {"type": "event", "name": "CacheUpdated"},
                {"name": "owner"},
            ),
        )
        assert contract.function_names() == {"rebuildCache", "owner"}
        assert contract.has_function("rebuildCache")
        assert not contract.has_function("CacheUpdated")

    def test_artifact_interface(self):
        artifact = Artifact.from_dict("Issuer", {"abi": [{"name": "owner"}], "evm": {"bytecode": {"object": "60"}}})
        assert artifact.interface == {"abi": [{"name": "owner"}]}
        assert artifact.bytecode == "60"


class TestDeploymentRecord:

    def test_target_serializes_time_in_milliseconds(self):
        when = datetime(2021, 5, 1, tzinfo=timezone.utc)
        target = Target(name="A", address="0x1", source="A", time_deployed=when, network="kovan")
        data = target.to_dict()
        assert data["timeDeployed"] == int(when.timestamp() * 1000)
        assert Target.from_dict("A", data) == target

    def test_target_library_flag(self):
        target = Target(name="SafeDecimalMath", address="0x1", source="SafeDecimalMath", library=True)
        assert target.to_dict()["library"] is True
        assert Target.from_dict("SafeDecimalMath", target.to_dict()).library is True
        assert "library" not in Target(name="A", address="0x1", source="A").to_dict()

    def test_address_of_empty_address(self):
        record = DeploymentRecord.from_dict({"targets": {"A": {"address": ""}}})
        assert record.address_of("A") is None
        assert record.address_of("Missing") is None
        assert not record.is_empty()

    def test_record_stores_interface_by_source(self):
        record = DeploymentRecord()
        record.record(Target(name="ProxyERC20", address="0x1", source="Proxy"), {"abi": [{"name": "target"}]})
        assert record.interface_of("ProxyERC20") == {"abi": [{"name": "target"}]}
        assert record.to_dict()["sources"] == {"Proxy": {"abi": [{"name": "target"}]}}

    def test_from_empty(self):
        assert DeploymentRecord.from_dict(None).is_empty()


class TestPendingAction:

    def test_dict_format(self):
        action = PendingAction(
            key="Issuer.addPynths(pUSD)",
            target="0x1",
            action="addPynths(pUSD)",
            data="0xabcd",
            link="https://explorer/address/0x1#writeContract",
        )
        assert action.to_dict() == {
            "target": "0x1",
            "action": "addPynths(pUSD)",
            "complete": False,
            "data": "0xabcd",
            "link": "https://explorer/address/0x1#writeContract",
        }
        assert PendingAction.from_dict(action.key, action.to_dict()) == action


class TestPredicates:

    def test_equals_hex_case_insensitive(self):
        assert equals("0xABCDEF")("0xabcdef")
        assert not equals("ABC")("abc")

    def test_equals_lists(self):
        assert equals(["0xAA", 1])(("0xaa", 1))
        assert not equals(["0xAA"])(["0xaa", 1])

    def test_equals_exposes_expected(self):
        predicate = equals(["1", "2"])
        assert isinstance(predicate, Equals)
        assert predicate.expected == ["1", "2"]

    def test_truthy_and_differs(self):
        assert truthy()(1)
        assert not truthy()(0)
        assert differs_from("0x" + "0" * 40)("0x" + "1" * 40)
        assert not differs_from("0xAB")("0xab")

    def test_probe_default_is_truthy(self):
        probe = ReadProbe(function="isResolverCached")
        assert probe.satisfied_by(True)
        assert not probe.satisfied_by(False)


class TestStepOutcome:

    def test_constructors(self):
        assert StepOutcome.noop().is_noop
        assert StepOutcome.submitted("0x1").id == "0x1"
        assert StepOutcome.queued("A.b()").key == "A.b()"
        assert StepOutcome.queued("A.b()").kind == OutcomeKind.QUEUED

    def test_submitted_requires_id(self):
        with pytest.raises(ValueError):
            StepOutcome(kind=OutcomeKind.SUBMITTED)

    def test_only_submitted_carries_id(self):
        with pytest.raises(ValueError):
            StepOutcome(kind=OutcomeKind.NOOP, id="0x1")

    def test_to_dict(self):
        assert StepOutcome.queued("A.b()").to_dict() == {"kind": "queued", "key": "A.b()"}

    def test_batch_limit_validated(self):
        contract = Contract(name="A", address="0x1")
        with pytest.raises(ValueError):
            StepRequest(contract=contract, write=WriteCall(function="f"), batch_limit=0)
