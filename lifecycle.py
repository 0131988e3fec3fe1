import csv
import datetime
import itertools
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections import namedtuple
from contextlib import contextmanager
from functools import reduce

from openpyxl import load_workbook

logger = logging.getLogger("lifecycle")

STATUS_AVAILABLE = "available"
STATUS_DEPLOYED = "deployed"
STATUS_PENDING = "pending"
STATUS_OVERDUE = "overdue"
STATUS_ARCHIVED = "archived"
STATUS_OPTIONS = [
    STATUS_AVAILABLE,
    STATUS_DEPLOYED,
    STATUS_PENDING,
    STATUS_OVERDUE,
    STATUS_ARCHIVED,
]
ASSIGNED_STATUSES = {STATUS_DEPLOYED, STATUS_OVERDUE}
STATUS_ALIASES = {
    "in stock": STATUS_AVAILABLE,
    "assigned": STATUS_DEPLOYED,
    "checked out": STATUS_DEPLOYED,
    "write off": STATUS_ARCHIVED,
    "retired": STATUS_ARCHIVED,
}
STATUS_LABELS = {status: status.title() for status in STATUS_OPTIONS}

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
ACTION_CHECKOUT = "checkout"
ACTION_CHECKIN = "checkin"
ACTIONS = {ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE, ACTION_CHECKOUT, ACTION_CHECKIN}

TRANSITION_CHECKOUT = "checkout"
AUTO_CHECKOUT_NOTE = "Asset automatically checked out to KnoxID: {}"

ASSET_FIELDS = (
    "asset_tag",
    "name",
    "description",
    "category",
    "status",
    "condition",
    "serial_number",
    "model",
    "manufacturer",
    "location",
    "department",
    "purchase_date",
    "purchase_cost",
    "ip_address",
    "mac_address",
    "os_type",
    "notes",
    "knox_id",
    "assigned_to",
    "checkout_date",
    "expected_checkin_date",
    "finance_updated",
)
CUSTODY_FIELDS = {"assigned_to", "checkout_date", "expected_checkin_date"}
EDITABLE_FIELDS = tuple(name for name in ASSET_FIELDS if name not in CUSTODY_FIELDS)
REQUIRED_CREATE_FIELDS = ("asset_tag", "name", "category")


class LifecycleError(Exception):
    status_code = 400


class NotFound(LifecycleError):
    status_code = 404


class InvalidTransition(LifecycleError):
    status_code = 400


class DuplicateKey(LifecycleError):
    status_code = 409


class ValidationError(LifecycleError):
    status_code = 400


class RowFailure(LifecycleError):
    def __init__(self, index, message):
        super().__init__(f"Row {index}: {message}")
        self.index = index
        self.reason = message


def normalize_key(value):
    if value is None:
        return ""
    return str(value).strip().casefold()


def clean_value(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_status(value):
    return str(value or "").strip().lower().replace("_", " ")


def parse_status(value, default=None):
    status_norm = normalize_status(value)
    if not status_norm:
        return default
    if status_norm in STATUS_OPTIONS:
        return status_norm
    if status_norm in STATUS_ALIASES:
        return STATUS_ALIASES[status_norm]
    raise ValidationError(f"Unknown status: {value}")


def format_status_label(value):
    return STATUS_LABELS.get(normalize_status(value), value or "-")


def normalize_header(value):
    return re.sub(r"[\s_\-]+", "", str(value or "").strip().lower())


def parse_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"Invalid date: {value}") from None


class AssetStore(ABC):
    """Record store for assets, their activity trail and assignee lookups.

    Every method is atomic for a single record. ``insert`` and ``update``
    enforce tag uniqueness on the normalized key and raise ``DuplicateKey``.
    """

    @abstractmethod
    def get(self, asset_id):
        pass

    @abstractmethod
    def find(self, tag):
        pass

    @abstractmethod
    def find_all(self):
        pass

    @abstractmethod
    def find_by_serial(self, value):
        pass

    @abstractmethod
    def insert(self, record):
        pass

    @abstractmethod
    def update(self, asset_id, fields):
        pass

    @abstractmethod
    def delete(self, asset_id):
        pass

    @abstractmethod
    def get_user(self, user_id):
        pass

    @abstractmethod
    def add_activity(self, entry):
        pass

    @abstractmethod
    def list_activities(self, entity_type=None, entity_id=None, user_id=None):
        pass


class MemoryStore(AssetStore):
    def __init__(self, users=None, user_lookup=None):
        self._lock = threading.Lock()
        self._assets = {}
        self._activities = []
        self._asset_ids = itertools.count(1)
        self._activity_ids = itertools.count(1)
        self._users = dict(users or {})
        self._user_lookup = user_lookup

    def add_user(self, user_id, username):
        self._users[user_id] = {"id": user_id, "username": username}
        return dict(self._users[user_id])

    def _tag_owner(self, tag):
        key = normalize_key(tag)
        if not key:
            return None
        for record in self._assets.values():
            if normalize_key(record["asset_tag"]) == key:
                return record
        return None

    def get(self, asset_id):
        with self._lock:
            record = self._assets.get(asset_id)
            return dict(record) if record else None

    def find(self, tag):
        with self._lock:
            record = self._tag_owner(tag)
            return dict(record) if record else None

    def find_all(self):
        with self._lock:
            return [dict(record) for _, record in sorted(self._assets.items())]

    def find_by_serial(self, value):
        key = normalize_key(value)
        if not key:
            return None
        with self._lock:
            for _, record in sorted(self._assets.items()):
                if normalize_key(record.get("serial_number")) == key:
                    return dict(record)
        return None

    def insert(self, record):
        with self._lock:
            if self._tag_owner(record.get("asset_tag")):
                raise DuplicateKey(f"Asset tag already exists: {record.get('asset_tag')}")
            stored = {name: None for name in ASSET_FIELDS}
            stored.update(record)
            stored["id"] = next(self._asset_ids)
            self._assets[stored["id"]] = stored
            return dict(stored)

    def update(self, asset_id, fields):
        with self._lock:
            record = self._assets.get(asset_id)
            if record is None:
                raise NotFound(f"Asset {asset_id} not found")
            if "asset_tag" in fields:
                owner = self._tag_owner(fields["asset_tag"])
                if owner is not None and owner["id"] != asset_id:
                    raise DuplicateKey(f"Asset tag already exists: {fields['asset_tag']}")
            updated = dict(record)
            updated.update({key: value for key, value in fields.items() if key != "id"})
            self._assets[asset_id] = updated
            return dict(updated)

    def delete(self, asset_id):
        with self._lock:
            if self._assets.pop(asset_id, None) is None:
                raise NotFound(f"Asset {asset_id} not found")

    def get_user(self, user_id):
        if self._user_lookup is not None:
            return self._user_lookup(user_id)
        user = self._users.get(user_id)
        return dict(user) if user else None

    def add_activity(self, entry):
        with self._lock:
            stored = dict(entry)
            stored["id"] = next(self._activity_ids)
            self._activities.append(stored)
            return dict(stored)

    def list_activities(self, entity_type=None, entity_id=None, user_id=None):
        with self._lock:
            entries = list(self._activities)
        if entity_type is not None:
            entries = [entry for entry in entries if entry["entity_type"] == entity_type]
        if entity_id is not None:
            entries = [entry for entry in entries if entry["entity_id"] == entity_id]
        if user_id is not None:
            entries = [entry for entry in entries if entry["user_id"] == user_id]
        return [dict(entry) for entry in entries]


class ActivityLog:
    def __init__(self, store, clock=None):
        self._store = store
        self._clock = clock or datetime.datetime.utcnow

    def record(self, action, entity_id, actor_id=None, note=None, entity_type="asset"):
        if action not in ACTIONS:
            raise ValueError(f"Unknown activity action: {action}")
        logger.info(
            "audit action=%s entity=%s entity_id=%s user=%s details=%s",
            action,
            entity_type,
            entity_id if entity_id is not None else "-",
            actor_id if actor_id is not None else "-",
            note or "-",
        )
        return self._store.add_activity(
            {
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "user_id": actor_id,
                "timestamp": self._clock(),
                "notes": note,
            }
        )

    def for_asset(self, asset_id):
        return self._store.list_activities(entity_type="asset", entity_id=asset_id)

    def entries(self, user_id=None):
        return self._store.list_activities(user_id=user_id)


class TagLocks:
    """Per-tag re-entrant locks; a caller takes all of its keys at once, sorted.

    Entries are reference counted and dropped once no caller holds or waits
    on them.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    def _claim(self, keys):
        with self._guard:
            entries = []
            for key in keys:
                entry = self._locks.get(key)
                if entry is None:
                    entry = self._locks[key] = [threading.RLock(), 0]
                entry[1] += 1
                entries.append(entry)
            return entries

    def _release(self, keys):
        with self._guard:
            for key in keys:
                entry = self._locks[key]
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    @contextmanager
    def hold(self, *tags):
        keys = sorted({normalize_key(tag) for tag in tags if normalize_key(tag)})
        entries = self._claim(keys)
        acquired = []
        try:
            for lock, _ in entries:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            self._release(keys)


Transition = namedtuple("Transition", "kind knox_id note")


def decide_auto_checkout(record, changes):
    """Return the custody transition a Knox ID edit implies, or None.

    ``record`` is the asset before the edit (None on creation) and
    ``changes`` the incoming field values.
    """
    knox_id = clean_value(changes.get("knox_id"))
    if not knox_id:
        return None
    current_status = record["status"] if record else None
    status = parse_status(changes.get("status"), default=current_status or STATUS_AVAILABLE)
    if status in {STATUS_PENDING, STATUS_ARCHIVED}:
        return None
    if current_status in ASSIGNED_STATUSES and status in ASSIGNED_STATUSES:
        # already in custody; the knox id is stored, the assignee is kept
        return None
    return Transition(TRANSITION_CHECKOUT, knox_id, AUTO_CHECKOUT_NOTE.format(knox_id))


class AssetLifecycle:
    def __init__(self, store, activity_log=None, system_assignee_id=1, clock=None):
        self.store = store
        self._clock = clock or datetime.datetime.utcnow
        self.activity = activity_log or ActivityLog(store, clock=self._clock)
        self.system_assignee_id = system_assignee_id
        self._locks = TagLocks()

    def _today(self):
        return self._clock().date()

    def get_asset(self, asset_id):
        record = self.store.get(asset_id)
        if record is None:
            raise NotFound(f"Asset {asset_id} not found")
        return record

    def list_assets(self, status=None, query=None):
        records = self.store.find_all()
        status_norm = parse_status(status)
        if status_norm:
            records = [record for record in records if record["status"] == status_norm]
        query_norm = normalize_key(query)
        if query_norm:
            records = [
                record
                for record in records
                if any(
                    query_norm in normalize_key(record.get(name))
                    for name in ("asset_tag", "name", "serial_number", "knox_id", "model")
                )
            ]
        return records

    def history(self, asset_id):
        return self.activity.for_asset(asset_id)

    @contextmanager
    def _locked_asset(self, asset_id, *extra_tags):
        while True:
            record = self.get_asset(asset_id)
            with self._locks.hold(record["asset_tag"], *extra_tags):
                current = self.get_asset(asset_id)
                if normalize_key(current["asset_tag"]) != normalize_key(record["asset_tag"]):
                    continue
                yield current
                return

    def _describe(self, record):
        return f"{record.get('name')} ({record.get('asset_tag')})"

    def _apply_transition(self, record, transition):
        fields = {
            "status": STATUS_DEPLOYED,
            "assigned_to": self.system_assignee_id,
            "checkout_date": self._today(),
            "knox_id": transition.knox_id,
            "expected_checkin_date": None,
        }
        updated = self.store.update(record["id"], fields)
        self.activity.record(ACTION_CHECKOUT, record["id"], note=transition.note)
        logger.info(
            "auto_checkout asset=%s kind=%s knox_id=%s",
            record["asset_tag"],
            transition.kind,
            transition.knox_id,
        )
        return updated

    def create_asset(self, fields, actor_id=None, note=None):
        data = {}
        for name in EDITABLE_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            data[name] = clean_value(value) if isinstance(value, str) else value
        missing = [name for name in REQUIRED_CREATE_FIELDS if not data.get(name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        status = parse_status(data.get("status"), default=STATUS_AVAILABLE)
        transition = decide_auto_checkout(None, dict(data, status=status))
        if status in ASSIGNED_STATUSES:
            if transition is None:
                raise InvalidTransition(
                    f"Asset cannot be created as {status} without a checkout"
                )
            status = STATUS_AVAILABLE
        data["status"] = status
        data.setdefault("condition", "Good")
        data.setdefault("finance_updated", False)
        with self._locks.hold(data["asset_tag"]):
            if self.store.find(data["asset_tag"]) is not None:
                raise DuplicateKey(f"Asset tag already exists: {data['asset_tag']}")
            record = self.store.insert(data)
            self.activity.record(
                ACTION_CREATE,
                record["id"],
                actor_id=actor_id,
                note=note or f"Asset {self._describe(record)} created",
            )
            if transition is not None:
                record = self._apply_transition(record, transition)
        return record

    def checkout(
        self,
        asset_id,
        assignee_id,
        expected_checkin_date=None,
        note=None,
        actor_id=None,
        knox_id=None,
    ):
        expected = parse_date(expected_checkin_date)
        with self._locked_asset(asset_id) as record:
            user = self.store.get_user(assignee_id)
            if user is None:
                raise NotFound(f"User {assignee_id} not found")
            if record["status"] != STATUS_AVAILABLE:
                raise InvalidTransition(
                    f"Asset {record['asset_tag']} cannot be checked out while {record['status']}"
                )
            fields = {
                "status": STATUS_DEPLOYED,
                "assigned_to": assignee_id,
                "checkout_date": self._today(),
                "expected_checkin_date": expected,
            }
            knox_value = clean_value(knox_id)
            if knox_value:
                fields["knox_id"] = knox_value
            updated = self.store.update(asset_id, fields)
            if not note:
                note = f"Asset {self._describe(record)} checked out to {user.get('username') or assignee_id}"
                if knox_value:
                    note = f"{note} (KnoxID: {knox_value})"
            self.activity.record(ACTION_CHECKOUT, asset_id, actor_id=actor_id, note=note)
            return updated

    def checkin(self, asset_id, actor_id=None, note=None):
        with self._locked_asset(asset_id) as record:
            if record["status"] not in ASSIGNED_STATUSES:
                raise InvalidTransition(
                    f"Asset {record['asset_tag']} cannot be checked in while {record['status']}"
                )
            updated = self.store.update(
                asset_id,
                {
                    "status": STATUS_AVAILABLE,
                    "assigned_to": None,
                    "checkout_date": None,
                    "expected_checkin_date": None,
                    "knox_id": None,
                },
            )
            self.activity.record(
                ACTION_CHECKIN,
                asset_id,
                actor_id=actor_id,
                note=note or f"Asset {self._describe(record)} checked in",
            )
            return updated

    def apply_edit(self, asset_id, changes, actor_id=None, note=None):
        changes = {name: changes[name] for name in EDITABLE_FIELDS if name in changes}
        new_tag = None
        if "asset_tag" in changes:
            new_tag = clean_value(changes["asset_tag"])
            if not new_tag:
                raise ValidationError("Asset tag cannot be blank")
        with self._locked_asset(asset_id, new_tag) as record:
            transition = decide_auto_checkout(record, changes)
            fields = {}
            for name, value in changes.items():
                if name in {"status", "knox_id"}:
                    continue
                fields[name] = clean_value(value) if isinstance(value, str) else value
            if new_tag and normalize_key(new_tag) != normalize_key(record["asset_tag"]):
                owner = self.store.find(new_tag)
                if owner is not None and owner["id"] != asset_id:
                    raise DuplicateKey(f"Asset tag already exists: {new_tag}")
            for name in ("name", "category"):
                if name in fields and not fields[name]:
                    raise ValidationError(f"{name.title()} cannot be blank")
            status = parse_status(changes.get("status"), default=record["status"])
            if status != record["status"]:
                if status in ASSIGNED_STATUSES and record["status"] not in ASSIGNED_STATUSES:
                    if transition is None:
                        raise InvalidTransition(
                            f"Asset {record['asset_tag']} must be checked out before it can be {status}"
                        )
                elif status in ASSIGNED_STATUSES:
                    fields["status"] = status
                else:
                    fields.update(
                        status=status,
                        assigned_to=None,
                        checkout_date=None,
                        expected_checkin_date=None,
                    )
                    if status == STATUS_AVAILABLE:
                        fields["knox_id"] = None
            if "knox_id" in changes:
                fields["knox_id"] = clean_value(changes["knox_id"])
            updated = self.store.update(asset_id, fields)
            self.activity.record(
                ACTION_UPDATE,
                asset_id,
                actor_id=actor_id,
                note=note or f"Asset {self._describe(updated)} updated",
            )
            if transition is not None:
                updated = self._apply_transition(updated, transition)
            return updated

    def delete(self, asset_id, actor_id=None):
        with self._locked_asset(asset_id) as record:
            self.store.delete(asset_id)
            self.activity.record(
                ACTION_DELETE,
                asset_id,
                actor_id=actor_id,
                note=f"Asset {self._describe(record)} deleted",
            )
            return record

    def mark_overdue(self, asset_id, actor_id=None):
        with self._locked_asset(asset_id) as record:
            if record["status"] != STATUS_DEPLOYED:
                raise InvalidTransition(
                    f"Asset {record['asset_tag']} cannot be marked overdue while {record['status']}"
                )
            updated = self.store.update(asset_id, {"status": STATUS_OVERDUE})
            due = record.get("expected_checkin_date")
            self.activity.record(
                ACTION_UPDATE,
                asset_id,
                actor_id=actor_id,
                note=f"Asset {self._describe(record)} marked overdue (due {due or 'unknown'})",
            )
            return updated

    def sweep_overdue(self, today=None, actor_id=None):
        today = parse_date(today) or self._today()
        marked = []
        for record in self.store.find_all():
            due = record.get("expected_checkin_date")
            if record["status"] != STATUS_DEPLOYED or due is None or parse_date(due) >= today:
                continue
            try:
                marked.append(self.mark_overdue(record["id"], actor_id=actor_id))
            except (NotFound, InvalidTransition) as exc:
                # changed underneath the sweep
                logger.info("overdue sweep skipped asset=%s reason=%s", record["asset_tag"], exc)
        if marked:
            logger.info("overdue sweep marked %s assets", len(marked))
        return marked

    def cleanup_knox_ids(self, actor_id=None):
        cleaned = []
        for record in self.store.find_all():
            if record["status"] in ASSIGNED_STATUSES or not record.get("knox_id"):
                continue
            with self._locked_asset(record["id"]) as current:
                if current["status"] in ASSIGNED_STATUSES or not current.get("knox_id"):
                    continue
                cleaned.append(self.store.update(current["id"], {"knox_id": None}))
        self.activity.record(
            ACTION_UPDATE,
            None,
            actor_id=actor_id,
            note=f"Cleaned up Knox IDs for {len(cleaned)} assets that were not checked out",
        )
        return len(cleaned)

    def stats(self):
        counts = {status: 0 for status in STATUS_OPTIONS}
        records = self.store.find_all()
        for record in records:
            counts[record["status"]] = counts.get(record["status"], 0) + 1
        counts["total"] = len(records)
        return counts


IMPORT_HEADER_ALIASES = {
    "asset_tag": ("assettag", "tag"),
    "serial_number": ("serialnumber", "serial", "serialno"),
    "knox_id": ("knoxid", "knox"),
    "name": ("name", "assetname", "devicename"),
    "category": ("category", "type", "devicetype"),
    "status": ("status", "state"),
    "model": ("model", "modelnumber"),
    "manufacturer": ("manufacturer", "brand", "make", "vendor"),
    "location": ("location", "site", "office", "building", "room"),
    "department": ("department", "dept", "division", "unit"),
    "description": ("description", "comments", "remarks"),
    "notes": ("notes",),
    "purchase_date": ("purchasedate", "acquireddate", "dateacquired"),
    "purchase_cost": ("purchasecost", "cost", "price"),
    "ip_address": ("ipaddress", "ip"),
    "mac_address": ("macaddress", "mac"),
    "os_type": ("ostype", "os", "operatingsystem"),
    "condition": ("condition",),
}
IMPORT_HEADER_MAP = {
    alias: field_name
    for field_name, aliases in IMPORT_HEADER_ALIASES.items()
    for alias in aliases
}
MISSING_REQUIRED_FIELDS = "Missing required fields"
ROW_CREATED = "created"
ROW_UPDATED = "updated"
ROW_FAILED = "failed"

RowResult = namedtuple("RowResult", "index kind asset error")


class ImportOutcome(namedtuple("ImportOutcome", "total created updated failed errors")):
    __slots__ = ()

    @classmethod
    def empty(cls):
        return cls(0, 0, 0, 0, ())


def tally(outcome, result):
    outcome = outcome._replace(total=outcome.total + 1)
    if result.kind == ROW_CREATED:
        return outcome._replace(created=outcome.created + 1)
    if result.kind == ROW_UPDATED:
        return outcome._replace(updated=outcome.updated + 1)
    failure = RowFailure(result.index, result.error)
    return outcome._replace(
        failed=outcome.failed + 1,
        errors=outcome.errors + (str(failure),),
    )


def outcome_to_dict(outcome):
    return {
        "total": outcome.total,
        "successful": outcome.created,
        "updated": outcome.updated,
        "failed": outcome.failed,
        "errors": list(outcome.errors),
        "message": (
            f"Import completed. {outcome.created} assets created, "
            f"{outcome.updated} assets updated, {outcome.failed} failed."
        ),
    }


def normalize_import_row(row):
    data = {}
    for key, value in (row or {}).items():
        field_name = IMPORT_HEADER_MAP.get(normalize_header(key))
        if not field_name:
            continue
        if isinstance(value, (datetime.date, datetime.datetime)):
            value = value.isoformat()[:10]
        elif isinstance(value, float) and value.is_integer():
            value = int(value)
        text = clean_value(value)
        if text is None:
            continue
        data[field_name] = text
    return data


def has_required_fields(fields):
    if fields.get("asset_tag"):
        return True
    return bool(fields.get("serial_number") and fields.get("knox_id"))


def rows_from_csv(stream):
    reader = csv.DictReader(stream)
    rows = []
    for row in reader:
        if all(not (value or "").strip() for value in row.values() if isinstance(value, str)):
            continue
        rows.append(row)
    return rows


def rows_from_workbook(stream):
    workbook = load_workbook(stream, data_only=True, read_only=True)
    try:
        sheet = workbook.active
        rows = list(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()
    if not rows:
        return []
    headers = [str(cell).strip() if cell is not None else "" for cell in rows[0]]
    records = []
    for row in rows[1:]:
        if row is None or all(cell in {None, ""} for cell in row):
            continue
        records.append(
            {headers[idx]: cell for idx, cell in enumerate(row) if idx < len(headers) and headers[idx]}
        )
    return records


class BulkImporter:
    def __init__(self, lifecycle, tag_prefix="AST", default_category="Laptop", clock=None):
        self.lifecycle = lifecycle
        self.tag_prefix = tag_prefix
        self.default_category = default_category
        self._clock = clock or time.time

    def resolve(self, fields):
        store = self.lifecycle.store
        existing = None
        if fields.get("asset_tag"):
            existing = store.find(fields["asset_tag"])
        if existing is None and fields.get("serial_number"):
            existing = store.find_by_serial(fields["serial_number"])
        return existing

    def generate_tag(self, category, index):
        category_code = (category or "AST").upper().replace(" ", "")[:3] or "AST"
        stamp = str(int(self._clock() * 1000))[-6:]
        base = f"{self.tag_prefix}-{category_code}-{stamp}-{index:03d}"
        tag = base
        for suffix in itertools.count(2):
            if self.lifecycle.store.find(tag) is None:
                return tag
            tag = f"{base}-{suffix}"

    def _create_fields(self, fields, index):
        data = dict(fields)
        data.setdefault("category", self.default_category)
        if not data.get("name"):
            label = " ".join(
                part for part in (data.get("manufacturer"), data.get("model")) if part
            )
            if not label and data.get("serial_number"):
                label = f"Asset-{data['serial_number']}"
            data["name"] = label or data.get("asset_tag") or "Asset"
        if not data.get("asset_tag"):
            data["asset_tag"] = self.generate_tag(data["category"], index)
        return data

    def _update(self, existing, fields, actor_id):
        note = (
            f"Updated via CSV import. Asset Tag: {fields.get('asset_tag') or existing['asset_tag']}, "
            f"Serial: {fields.get('serial_number') or existing.get('serial_number') or 'N/A'}"
        )
        return self.lifecycle.apply_edit(existing["id"], fields, actor_id=actor_id, note=note)

    def import_row(self, index, row, actor_id=None):
        try:
            fields = normalize_import_row(row)
            if not has_required_fields(fields):
                return RowResult(index, ROW_FAILED, None, MISSING_REQUIRED_FIELDS)
            existing = self.resolve(fields)
            if existing is not None:
                return RowResult(index, ROW_UPDATED, self._update(existing, fields, actor_id), None)
            note = f"Created via CSV import. KnoxID: {fields.get('knox_id') or 'N/A'}"
            try:
                asset = self.lifecycle.create_asset(
                    self._create_fields(fields, index), actor_id=actor_id, note=note
                )
            except DuplicateKey:
                # created by a concurrent import since resolve()
                existing = self.resolve(fields)
                if existing is None:
                    raise
                return RowResult(index, ROW_UPDATED, self._update(existing, fields, actor_id), None)
            return RowResult(index, ROW_CREATED, asset, None)
        except Exception as exc:
            logger.warning("import row %s failed: %s", index, exc)
            return RowResult(index, ROW_FAILED, None, str(exc) or exc.__class__.__name__)

    def import_rows(self, rows, actor_id=None):
        rows = list(rows)
        logger.info("Starting bulk import of %s assets", len(rows))
        results = [
            self.import_row(index, row, actor_id=actor_id)
            for index, row in enumerate(rows, start=1)
        ]
        outcome = reduce(tally, results, ImportOutcome.empty())
        assets = [result.asset for result in results if result.asset is not None]
        logger.info(
            "bulk import finished total=%s created=%s updated=%s failed=%s",
            outcome.total,
            outcome.created,
            outcome.updated,
            outcome.failed,
        )
        return outcome, assets
