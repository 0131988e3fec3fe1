"""
Unit tests for the asset lifecycle state machine and activity trail.
"""
import datetime
import threading

import pytest

from lifecycle import (
    AUTO_CHECKOUT_NOTE,
    STATUS_OPTIONS,
    TRANSITION_CHECKOUT,
    ActivityLog,
    DuplicateKey,
    InvalidTransition,
    NotFound,
    TagLocks,
    ValidationError,
    clean_value,
    decide_auto_checkout,
    normalize_header,
    normalize_key,
    parse_status,
)
from tests.conftest import ALICE_ID, SYSTEM_USER_ID


def _actions(lifecycle, asset_id):
    return [entry["action"] for entry in lifecycle.history(asset_id)]


def _assignee_invariant_holds(record):
    assigned = record["status"] in {"deployed", "overdue"}
    return (record["assigned_to"] is not None) == assigned


class TestIdentifierNormalizer:
    def test_trims_and_case_folds(self):
        assert normalize_key("  Sn-00A1 \t") == "sn-00a1"

    def test_blank_input_gives_empty_key(self):
        assert normalize_key(None) == ""
        assert normalize_key("   ") == ""

    def test_clean_value_drops_blanks(self):
        assert clean_value("  K-1 ") == "K-1"
        assert clean_value("  ") is None
        assert clean_value(None) is None

    def test_status_aliases(self):
        assert parse_status("In Stock") == "available"
        assert parse_status("checked_out") == "deployed"
        assert parse_status("Write Off") == "archived"
        assert parse_status("", default="pending") == "pending"

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            parse_status("broken")

    def test_non_string_status_rejected(self):
        with pytest.raises(ValidationError):
            parse_status(5)

    def test_header_compaction(self):
        assert normalize_header("Serial Number") == "serialnumber"
        assert normalize_header("knox_id") == "knoxid"
        assert normalize_header("assetTag") == "assettag"


class TestDecideAutoCheckout:
    def test_creation_with_knox_id_checks_out(self):
        transition = decide_auto_checkout(None, {"knox_id": " K-100 "})
        assert transition.kind == TRANSITION_CHECKOUT
        assert transition.knox_id == "K-100"
        assert transition.note == "Asset automatically checked out to KnoxID: K-100"

    def test_blank_knox_id_is_ignored(self):
        record = {"status": "available", "knox_id": None}
        assert decide_auto_checkout(record, {"knox_id": "   "}) is None
        assert decide_auto_checkout(record, {"name": "x"}) is None

    def test_available_asset_checks_out(self):
        record = {"status": "available", "knox_id": None}
        assert decide_auto_checkout(record, {"knox_id": "K1"}).kind == TRANSITION_CHECKOUT

    def test_same_knox_id_while_deployed_is_noop(self):
        record = {"status": "deployed", "knox_id": "K1"}
        assert decide_auto_checkout(record, {"knox_id": " k1 "}) is None

    def test_new_knox_id_while_in_custody_is_left_alone(self):
        for status in ("deployed", "overdue"):
            record = {"status": status, "knox_id": "K1"}
            assert decide_auto_checkout(record, {"knox_id": "K2"}) is None
            assert decide_auto_checkout(record, {"knox_id": "K2", "status": "deployed"}) is None

    def test_archived_and_pending_assets_are_left_alone(self):
        for status in ("archived", "pending"):
            record = {"status": status, "knox_id": None}
            assert decide_auto_checkout(record, {"knox_id": "K1"}) is None

    def test_edit_back_to_available_with_knox_id_checks_out(self):
        record = {"status": "deployed", "knox_id": "K1"}
        transition = decide_auto_checkout(record, {"status": "available", "knox_id": "K1"})
        assert transition.kind == TRANSITION_CHECKOUT


class TestCreateAsset:
    def test_defaults_to_available(self, lifecycle):
        record = lifecycle.create_asset({"asset_tag": "A1", "name": "Pixel", "category": "Mobile"})
        assert record["status"] == "available"
        assert record["assigned_to"] is None
        assert _actions(lifecycle, record["id"]) == ["create"]

    def test_knox_id_triggers_checkout_on_create(self, lifecycle):
        record = lifecycle.create_asset(
            {"asset_tag": "A1", "name": "Galaxy", "category": "Mobile", "knox_id": "K-9"}
        )
        assert record["status"] == "deployed"
        assert record["assigned_to"] == SYSTEM_USER_ID
        assert record["knox_id"] == "K-9"
        assert record["checkout_date"] == datetime.date(2024, 5, 1)
        history = lifecycle.history(record["id"])
        assert [entry["action"] for entry in history] == ["create", "checkout"]
        assert history[1]["notes"] == AUTO_CHECKOUT_NOTE.format("K-9")
        assert history[1]["user_id"] is None

    def test_missing_required_fields(self, lifecycle):
        with pytest.raises(ValidationError):
            lifecycle.create_asset({"asset_tag": "A1", "category": "Mobile"})

    def test_duplicate_tag_is_case_insensitive(self, lifecycle):
        lifecycle.create_asset({"asset_tag": "A1", "name": "One", "category": "Mobile"})
        with pytest.raises(DuplicateKey):
            lifecycle.create_asset({"asset_tag": " a1 ", "name": "Two", "category": "Mobile"})

    def test_deployed_without_knox_id_is_rejected(self, lifecycle):
        with pytest.raises(InvalidTransition):
            lifecycle.create_asset(
                {"asset_tag": "A1", "name": "One", "category": "Mobile", "status": "deployed"}
            )
        assert lifecycle.store.find("A1") is None


class TestCheckoutCheckin:
    def test_checkout_available_asset(self, lifecycle, make_asset):
        asset = make_asset()
        record = lifecycle.checkout(
            asset["id"], ALICE_ID, expected_checkin_date="2024-06-01", actor_id=ALICE_ID
        )
        assert record["status"] == "deployed"
        assert record["assigned_to"] == ALICE_ID
        assert record["checkout_date"] == datetime.date(2024, 5, 1)
        assert record["expected_checkin_date"] == datetime.date(2024, 6, 1)
        checkout = lifecycle.history(asset["id"])[-1]
        assert checkout["action"] == "checkout"
        assert checkout["user_id"] == ALICE_ID
        assert "alice" in checkout["notes"]

    def test_checkout_with_knox_id_stores_it(self, lifecycle, make_asset):
        asset = make_asset()
        record = lifecycle.checkout(asset["id"], ALICE_ID, knox_id="K-55")
        assert record["knox_id"] == "K-55"
        assert "KnoxID: K-55" in lifecycle.history(asset["id"])[-1]["notes"]

    @pytest.mark.parametrize("status", STATUS_OPTIONS)
    def test_checkout_only_from_available(self, lifecycle, make_asset, status):
        asset = make_asset(status)
        before = lifecycle.get_asset(asset["id"])
        activity_count = len(lifecycle.history(asset["id"]))
        if status == "available":
            assert lifecycle.checkout(asset["id"], ALICE_ID)["status"] == "deployed"
            return
        with pytest.raises(InvalidTransition):
            lifecycle.checkout(asset["id"], ALICE_ID)
        assert lifecycle.get_asset(asset["id"]) == before
        assert len(lifecycle.history(asset["id"])) == activity_count

    @pytest.mark.parametrize("status", STATUS_OPTIONS)
    def test_checkin_only_from_assigned(self, lifecycle, make_asset, status):
        asset = make_asset(status)
        before = lifecycle.get_asset(asset["id"])
        activity_count = len(lifecycle.history(asset["id"]))
        if status in {"deployed", "overdue"}:
            record = lifecycle.checkin(asset["id"])
            assert record["status"] == "available"
            assert record["assigned_to"] is None
            assert record["checkout_date"] is None
            assert record["expected_checkin_date"] is None
            assert _actions(lifecycle, asset["id"])[-1] == "checkin"
            return
        with pytest.raises(InvalidTransition):
            lifecycle.checkin(asset["id"])
        assert lifecycle.get_asset(asset["id"]) == before
        assert len(lifecycle.history(asset["id"])) == activity_count

    def test_checkin_clears_knox_id(self, lifecycle):
        record = lifecycle.create_asset(
            {"asset_tag": "A1", "name": "Galaxy", "category": "Mobile", "knox_id": "K1"}
        )
        assert lifecycle.checkin(record["id"])["knox_id"] is None

    def test_checkout_unknown_asset_or_user(self, lifecycle, make_asset):
        asset = make_asset()
        with pytest.raises(NotFound):
            lifecycle.checkout(999, ALICE_ID)
        with pytest.raises(NotFound):
            lifecycle.checkout(asset["id"], 404)
        assert lifecycle.get_asset(asset["id"])["status"] == "available"

    def test_checkin_unknown_asset(self, lifecycle):
        with pytest.raises(NotFound):
            lifecycle.checkin(12345)

    def test_concurrent_checkouts_only_one_wins(self, lifecycle, make_asset, memory_store):
        asset = make_asset()
        memory_store.add_user(3, "bob")
        barrier = threading.Barrier(2)
        results = []

        def worker(user_id):
            barrier.wait()
            try:
                lifecycle.checkout(asset["id"], user_id)
                results.append("ok")
            except InvalidTransition:
                results.append("rejected")

        threads = [threading.Thread(target=worker, args=(user_id,)) for user_id in (ALICE_ID, 3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert sorted(results) == ["ok", "rejected"]
        assert _actions(lifecycle, asset["id"]).count("checkout") == 1


class TestApplyEdit:
    def test_plain_edit_logs_update(self, lifecycle, make_asset):
        asset = make_asset()
        record = lifecycle.apply_edit(asset["id"], {"location": " HQ-2 ", "id": 99})
        assert record["location"] == "HQ-2"
        assert record["id"] == asset["id"]
        assert _actions(lifecycle, asset["id"]) == ["create", "update"]

    def test_custody_fields_are_not_editable(self, lifecycle, make_asset):
        asset = make_asset()
        record = lifecycle.apply_edit(asset["id"], {"assigned_to": ALICE_ID})
        assert record["assigned_to"] is None

    def test_knox_id_triggers_auto_checkout(self, lifecycle, make_asset):
        asset = make_asset()
        before = len(lifecycle.history(asset["id"]))
        record = lifecycle.apply_edit(asset["id"], {"knox_id": "K-77"})
        assert record["status"] == "deployed"
        assert record["assigned_to"] == SYSTEM_USER_ID
        assert record["knox_id"] == "K-77"
        new_entries = lifecycle.history(asset["id"])[before:]
        checkouts = [entry for entry in new_entries if entry["action"] == "checkout"]
        assert len(checkouts) == 1
        assert "K-77" in checkouts[0]["notes"]

    def test_same_knox_id_does_not_check_out_again(self, lifecycle):
        record = lifecycle.create_asset(
            {"asset_tag": "A1", "name": "Galaxy", "category": "Mobile", "knox_id": "K1"}
        )
        lifecycle.apply_edit(record["id"], {"knox_id": "K1", "notes": "recheck"})
        assert _actions(lifecycle, record["id"]).count("checkout") == 1

    @pytest.mark.parametrize("status", ["deployed", "overdue"])
    def test_new_knox_id_keeps_current_holder(self, lifecycle, make_asset, status):
        asset = make_asset(status)
        record = lifecycle.apply_edit(asset["id"], {"knox_id": "K7"})
        assert record["status"] == status
        assert record["knox_id"] == "K7"
        assert record["assigned_to"] == ALICE_ID
        assert record["checkout_date"] == asset["checkout_date"]
        assert _actions(lifecycle, asset["id"]).count("checkout") == 1
        assert _actions(lifecycle, asset["id"])[-1] == "update"

    def test_clearing_knox_id_does_not_check_in(self, lifecycle):
        record = lifecycle.create_asset(
            {"asset_tag": "A1", "name": "Galaxy", "category": "Mobile", "knox_id": "K1"}
        )
        record = lifecycle.apply_edit(record["id"], {"knox_id": ""})
        assert record["knox_id"] is None
        assert record["status"] == "deployed"
        assert record["assigned_to"] == SYSTEM_USER_ID

    def test_tag_collision(self, lifecycle, make_asset):
        first = make_asset()
        second = make_asset()
        with pytest.raises(DuplicateKey):
            lifecycle.apply_edit(second["id"], {"asset_tag": first["asset_tag"].lower()})
        assert lifecycle.get_asset(second["id"])["asset_tag"] == second["asset_tag"]

    def test_renaming_tag(self, lifecycle, make_asset):
        asset = make_asset()
        record = lifecycle.apply_edit(asset["id"], {"asset_tag": "NEW-1"})
        assert record["asset_tag"] == "NEW-1"
        assert lifecycle.store.find("new-1")["id"] == asset["id"]

    def test_status_into_deployed_needs_checkout(self, lifecycle, make_asset):
        asset = make_asset()
        with pytest.raises(InvalidTransition):
            lifecycle.apply_edit(asset["id"], {"status": "deployed"})
        assert lifecycle.get_asset(asset["id"])["status"] == "available"

    def test_archiving_deployed_asset_clears_custody(self, lifecycle, make_asset):
        asset = make_asset("deployed")
        record = lifecycle.apply_edit(asset["id"], {"status": "archived"})
        assert record["status"] == "archived"
        assert record["assigned_to"] is None
        assert record["checkout_date"] is None

    def test_deployed_to_overdue_by_edit(self, lifecycle, make_asset):
        asset = make_asset("deployed")
        record = lifecycle.apply_edit(asset["id"], {"status": "overdue"})
        assert record["status"] == "overdue"
        assert record["assigned_to"] == ALICE_ID

    def test_unknown_asset(self, lifecycle):
        with pytest.raises(NotFound):
            lifecycle.apply_edit(42, {"name": "x"})


class TestDeleteAndMaintenance:
    def test_delete(self, lifecycle, make_asset):
        asset = make_asset()
        lifecycle.delete(asset["id"], actor_id=ALICE_ID)
        with pytest.raises(NotFound):
            lifecycle.get_asset(asset["id"])
        entry = lifecycle.history(asset["id"])[-1]
        assert entry["action"] == "delete"
        assert entry["user_id"] == ALICE_ID
        with pytest.raises(NotFound):
            lifecycle.delete(asset["id"])

    def test_mark_overdue_requires_deployed(self, lifecycle, make_asset):
        asset = make_asset()
        with pytest.raises(InvalidTransition):
            lifecycle.mark_overdue(asset["id"])

    def test_sweep_overdue(self, lifecycle, make_asset):
        late = make_asset()
        on_time = make_asset()
        lifecycle.checkout(late["id"], ALICE_ID, expected_checkin_date="2024-04-20")
        lifecycle.checkout(on_time["id"], ALICE_ID, expected_checkin_date="2024-05-20")
        marked = lifecycle.sweep_overdue()
        assert [record["id"] for record in marked] == [late["id"]]
        assert lifecycle.get_asset(late["id"])["status"] == "overdue"
        assert lifecycle.get_asset(on_time["id"])["status"] == "deployed"

    def test_cleanup_knox_ids(self, lifecycle, make_asset):
        stale = make_asset("archived", knox_id="K-OLD")
        live = lifecycle.create_asset(
            {"asset_tag": "LIVE", "name": "Galaxy", "category": "Mobile", "knox_id": "K-LIVE"}
        )
        assert lifecycle.get_asset(stale["id"])["knox_id"] == "K-OLD"
        assert lifecycle.cleanup_knox_ids() == 1
        assert lifecycle.get_asset(stale["id"])["knox_id"] is None
        assert lifecycle.get_asset(live["id"])["knox_id"] == "K-LIVE"

    def test_stats(self, make_asset, lifecycle):
        make_asset()
        make_asset("deployed")
        make_asset("overdue")
        make_asset("archived")
        stats = lifecycle.stats()
        assert stats["total"] == 4
        assert stats["available"] == 1
        assert stats["deployed"] == 1
        assert stats["overdue"] == 1
        assert stats["archived"] == 1
        assert stats["pending"] == 0

    def test_list_assets_filters(self, lifecycle, make_asset):
        make_asset(serial_number="SN-1")
        make_asset("deployed", serial_number="SN-2")
        assert len(lifecycle.list_assets(status="deployed")) == 1
        assert len(lifecycle.list_assets(query="sn-1")) == 1


class TestAssigneeInvariant:
    def test_invariant_over_a_lifecycle(self, lifecycle, make_asset):
        asset = make_asset()
        steps = [
            lambda: lifecycle.checkout(asset["id"], ALICE_ID),
            lambda: lifecycle.mark_overdue(asset["id"]),
            lambda: lifecycle.checkin(asset["id"]),
            lambda: lifecycle.apply_edit(asset["id"], {"knox_id": "K1"}),
            lambda: lifecycle.apply_edit(asset["id"], {"knox_id": "K2"}),
            lambda: lifecycle.apply_edit(asset["id"], {"status": "pending"}),
            lambda: lifecycle.apply_edit(asset["id"], {"status": "available"}),
            lambda: lifecycle.apply_edit(asset["id"], {"status": "archived"}),
        ]
        assert _assignee_invariant_holds(lifecycle.get_asset(asset["id"]))
        for step in steps:
            assert _assignee_invariant_holds(step())


class TestTagLocks:
    def test_registry_empties_after_use(self, lifecycle):
        for index in range(50):
            record = lifecycle.create_asset(
                {"asset_tag": f"TMP-{index}", "name": "Temp", "category": "Laptop"}
            )
            lifecycle.apply_edit(record["id"], {"asset_tag": f"TMP-{index}-B"})
            lifecycle.delete(record["id"])
        with pytest.raises(DuplicateKey):
            lifecycle.create_asset({"asset_tag": "DUP", "name": "One", "category": "Laptop"})
            lifecycle.create_asset({"asset_tag": "dup", "name": "Two", "category": "Laptop"})
        assert len(lifecycle._locks) == 0

    def test_nested_holds_share_one_entry(self):
        locks = TagLocks()
        with locks.hold("A1"):
            with locks.hold(" a1 ", "B2"):
                assert len(locks) == 2
            assert len(locks) == 1
        assert len(locks) == 0


class TestActivityLog:
    def test_rejects_unknown_action(self, memory_store):
        log = ActivityLog(memory_store)
        with pytest.raises(ValueError):
            log.record("teleport", 1)

    def test_entries_filter_by_user(self, memory_store):
        log = ActivityLog(memory_store, clock=lambda: datetime.datetime(2024, 1, 1))
        log.record("create", 1, actor_id=ALICE_ID, note="made")
        log.record("update", 1, note="system")
        assert [entry["notes"] for entry in log.entries(user_id=ALICE_ID)] == ["made"]
        assert len(log.for_asset(1)) == 2

    def test_returned_entries_are_copies(self, memory_store):
        log = ActivityLog(memory_store)
        entry = log.record("create", 1)
        entry["notes"] = "tampered"
        assert log.for_asset(1)[0]["notes"] is None
