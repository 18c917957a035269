"""
Deployment tests: record file, admin/genesis seeding, duplicate protection,
and reloading a deployed registry from its journal.
"""

import json
import sqlite3

import pytest

from conftest import ALICE, BOB, OWNER
from govreg.auth import generate_keypair, principal_from_public_key
from govreg.deploy import (
    apply_genesis,
    deploy,
    load_genesis,
    load_registry,
    principal_for_key,
    read_record,
    record_path,
    registry_address,
)
from govreg.errors import DeploymentError, InvalidArgument
from govreg.keys import key_id
from govreg.registry import GovernanceRegistry
from govreg.witness import EventJournal


@pytest.fixture
def paths(tmp_path):
    return {"data_dir": tmp_path, "db_path": tmp_path / "govreg.db"}


class TestDeploy:

    def test_writes_record(self, paths):
        deployment = deploy(OWNER, network="testnet", **paths)
        record = deployment.record

        assert record.network == "testnet"
        assert record.deployer == record.owner == OWNER
        assert record.address == registry_address(OWNER, "testnet", record.deployed_at)
        on_disk = json.loads(record_path("testnet", paths["data_dir"]).read_text())
        assert on_disk == record.to_dict()
        assert deployment.registry.owner() == OWNER
        assert deployment.journal.count() == 0

    def test_duplicate_network_rejected(self, paths):
        deploy(OWNER, network="testnet", **paths)
        with pytest.raises(DeploymentError, match="already deployed"):
            deploy(BOB, network="testnet", **paths)

    def test_networks_are_independent(self, paths):
        a = deploy(OWNER, network="alpha", **paths)
        b = deploy(OWNER, network="beta", **paths)
        assert a.record.address != b.record.address

    def test_admin_is_authorized_through_event(self, paths):
        deployment = deploy(OWNER, network="testnet", admin=ALICE, **paths)

        assert deployment.registry.is_authorized(ALICE)
        assert [e.name for e in deployment.registry.events()] == ["EntityAuthorized"]
        assert deployment.journal.count() == 1

    def test_zero_deployer_rejected(self, paths):
        with pytest.raises(InvalidArgument):
            deploy("0x" + "0" * 40, network="testnet", **paths)

    def test_principal_for_key(self):
        private_key, public_key = generate_keypair()
        assert principal_for_key(private_key) == principal_from_public_key(public_key)


class TestGenesis:

    def test_load_and_apply(self, tmp_path, paths):
        genesis_file = tmp_path / "genesis.yaml"
        genesis_file.write_text(
            "authorized_entities:\n"
            f'  "{ALICE}": true\n'
            "parameters:\n"
            '  quorum: "4"\n'
            f'  "{key_id("raw")}": raw-value\n'
        )
        deployment = deploy(OWNER, network="testnet", genesis=load_genesis(genesis_file), **paths)
        registry = deployment.registry

        assert registry.is_authorized(ALICE)
        assert registry.get_parameter(key_id("quorum")) == "4"
        assert registry.get_parameter(key_id("raw")) == "raw-value"
        assert deployment.journal.count() == 3

    def test_apply_counts_events(self):
        registry = GovernanceRegistry(OWNER)
        emitted = apply_genesis(registry, OWNER, {"authorized_entities": {BOB: False}, "parameters": {"a": 1}})

        assert emitted == 2
        assert registry.get_parameter(key_id("a")) == "1"

    def test_missing_file(self, tmp_path):
        with pytest.raises(DeploymentError, match="not found"):
            load_genesis(tmp_path / "nope.yaml")

    def test_non_mapping_file(self, tmp_path):
        genesis_file = tmp_path / "genesis.yaml"
        genesis_file.write_text("- just\n- a list\n")
        with pytest.raises(DeploymentError):
            load_genesis(genesis_file)

    def test_rejected_seed_fails_deploy(self, paths):
        with pytest.raises(DeploymentError, match="initialization failed"):
            deploy(OWNER, network="testnet", genesis={"authorized_entities": {"0x0": True}}, **paths)
        assert not record_path("testnet", paths["data_dir"]).exists()


@pytest.fixture
def journal_fails_once(monkeypatch):
    append = EventJournal.append
    failures = [sqlite3.OperationalError("disk I/O error")]

    def append_or_fail(self, event):
        if failures:
            raise failures.pop()
        return append(self, event)

    monkeypatch.setattr(EventJournal, "append", append_or_fail)

class TestLoad:

    def test_round_trip(self, paths):
        deployment = deploy(OWNER, network="testnet", admin=ALICE, **paths)
        deployment.registry.set_parameter(ALICE, key_id("quorum"), "4")
        deployment.registry.transfer_ownership(OWNER, BOB)

        loaded = load_registry("testnet", **paths)

        assert loaded.record == deployment.record
        assert loaded.registry.snapshot() == deployment.registry.snapshot()
        assert loaded.registry.owner() == BOB

    def test_loaded_registry_keeps_journaling(self, paths):
        deploy(OWNER, network="testnet", **paths)
        loaded = load_registry("testnet", **paths)
        loaded.registry.set_parameter(OWNER, key_id("x"), "1")

        again = load_registry("testnet", **paths)
        assert again.registry.get_parameter(key_id("x")) == "1"
        assert again.journal.verify_chain()

    def test_missing_record(self, paths):
        with pytest.raises(DeploymentError, match="No registry deployed"):
            read_record("testnet", paths["data_dir"])

    def test_corrupt_record(self, paths):
        path = record_path("testnet", paths["data_dir"])
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        with pytest.raises(DeploymentError, match="Corrupt"):
            read_record("testnet", paths["data_dir"])

    def test_tampered_journal_refused(self, paths):
        deployment = deploy(OWNER, network="testnet", admin=ALICE, **paths)
        with sqlite3.connect(paths["db_path"]) as conn:
            conn.execute("UPDATE event_journal SET args = ? WHERE seq = 1",
                         (json.dumps({"entity": BOB, "authorized": True}),))

        with pytest.raises(DeploymentError, match="hash-chain"):
            load_registry("testnet", **paths)
        assert deployment.registry.is_authorized(ALICE)

    def test_failed_journal_write_is_not_acknowledged(self, paths, journal_fails_once):
        deployment = deploy(OWNER, network="testnet", **paths)
        registry = deployment.registry

        with pytest.raises(sqlite3.OperationalError):
            registry.set_parameter(OWNER, key_id("quorum"), "4")
        assert registry.get_parameter(key_id("quorum")) == ""
        assert registry.events() == []

        registry.set_parameter(OWNER, key_id("quorum"), "5")

        loaded = load_registry("testnet", **paths)
        assert loaded.journal.verify_chain()
        assert loaded.registry.get_parameter(key_id("quorum")) == "5"
        assert loaded.registry.snapshot() == registry.snapshot()
