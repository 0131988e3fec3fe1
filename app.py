import os
import io
import csv
import zipfile
import datetime
import logging
import hashlib
import secrets
from logging.handlers import RotatingFileHandler
from functools import wraps

from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
import jwt
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash, check_password_hash

from lifecycle import (
    ASSET_FIELDS,
    EDITABLE_FIELDS,
    IMPORT_HEADER_MAP,
    STATUS_AVAILABLE,
    AssetLifecycle,
    AssetStore,
    BulkImporter,
    DuplicateKey,
    LifecycleError,
    MemoryStore,
    NotFound,
    format_status_label,
    normalize_header,
    normalize_key,
    outcome_to_dict,
    rows_from_csv,
    rows_from_workbook,
)

app = Flask(__name__)
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
    "DATABASE_URL", "sqlite:///inventory.db"
)
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key")
app.config["LOG_DIR"] = os.environ.get("LOG_DIR", "/data/logs")
app.config["LOG_FILE"] = os.environ.get("LOG_FILE", "app.log")
app.config["ASSET_STORE"] = os.environ.get("ASSET_STORE", "sql").strip().lower()
app.config["SYSTEM_ASSIGNEE_ID"] = int(os.environ.get("SYSTEM_ASSIGNEE_ID", "1"))
app.config["ASSET_TAG_PREFIX"] = os.environ.get("ASSET_TAG_PREFIX", "AST").strip() or "AST"
app.config["DEFAULT_IMPORT_CATEGORY"] = os.environ.get("DEFAULT_IMPORT_CATEGORY", "Laptop")
JWT_ACCESS_SECONDS = 15 * 60
JWT_REFRESH_SECONDS = 14 * 24 * 60 * 60
JWT_ALGORITHM = "HS256"
DEFAULT_PAGE_SIZE = 25
ROLE_PERMISSIONS = {
    "admin": {"can_read", "can_add", "can_delete", "can_import"},
    "operator": {"can_read", "can_add", "can_import"},
    "reader": {"can_read"},
}

db = SQLAlchemy(app)

_DB_INIT_DONE = False


def setup_logging():
    log_dir = app.config["LOG_DIR"]
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, app.config["LOG_FILE"])
    handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    handler.setFormatter(formatter)
    handler.setLevel(logging.INFO)
    app.logger.setLevel(logging.INFO)
    if not any(isinstance(h, RotatingFileHandler) for h in app.logger.handlers):
        app.logger.addHandler(handler)
    logging.getLogger("werkzeug").addHandler(handler)
    lifecycle_logger = logging.getLogger("lifecycle")
    lifecycle_logger.setLevel(logging.INFO)
    if not any(isinstance(h, RotatingFileHandler) for h in lifecycle_logger.handlers):
        lifecycle_logger.addHandler(handler)


setup_logging()


@app.teardown_request
def log_unhandled_exception(exc):
    if exc is not None:
        app.logger.exception("Unhandled exception", exc_info=exc)


@app.before_request
def handle_api_preflight():
    if request.method == "OPTIONS" and request.path.startswith("/api"):
        resp = app.response_class("", status=204)
        resp.headers["Access-Control-Allow-Origin"] = "*"
        resp.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        resp.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        return resp


@app.after_request
def add_api_headers(response):
    if request.path.startswith("/api"):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
    return response


@app.errorhandler(LifecycleError)
def handle_lifecycle_error(exc):
    app.logger.info(
        "api_error path=%s kind=%s error=%s", request.path, exc.__class__.__name__, exc
    )
    return jsonify({"error": str(exc)}), exc.status_code


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(255), nullable=True)


class RefreshToken(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    token_hash = db.Column(db.String(255), nullable=False, unique=True)
    issued_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)


class Asset(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    asset_tag = db.Column(db.String(80), nullable=False)
    tag_key = db.Column(db.String(80), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(80), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_AVAILABLE)
    condition = db.Column(db.String(20), nullable=False, default="Good")
    serial_number = db.Column(db.String(120), nullable=True)
    serial_key = db.Column(db.String(120), nullable=True, index=True)
    model = db.Column(db.String(80), nullable=True)
    manufacturer = db.Column(db.String(80), nullable=True)
    location = db.Column(db.String(120), nullable=True)
    department = db.Column(db.String(80), nullable=True)
    purchase_date = db.Column(db.String(20), nullable=True)
    purchase_cost = db.Column(db.String(40), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    mac_address = db.Column(db.String(40), nullable=True)
    os_type = db.Column(db.String(80), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    knox_id = db.Column(db.String(80), nullable=True)
    assigned_to = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    checkout_date = db.Column(db.Date, nullable=True)
    expected_checkin_date = db.Column(db.Date, nullable=True)
    finance_updated = db.Column(db.Boolean, nullable=False, default=False)


class Activity(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.datetime.utcnow)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    action = db.Column(db.String(20), nullable=False)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)


def asset_to_dict(item):
    return {name: getattr(item, name) for name in ("id",) + ASSET_FIELDS}


def activity_to_dict(item):
    return {
        "id": item.id,
        "action": item.action,
        "entity_type": item.entity_type,
        "entity_id": item.entity_id,
        "user_id": item.user_id,
        "timestamp": item.created_at,
        "notes": item.notes,
    }


def _refresh_keys(item):
    item.tag_key = normalize_key(item.asset_tag)
    item.serial_key = normalize_key(item.serial_number) or None


class SqlAlchemyStore(AssetStore):
    def __init__(self, database):
        self.db = database

    def _commit(self, tag=None):
        try:
            self.db.session.commit()
        except IntegrityError as exc:
            self.db.session.rollback()
            if "tag_key" not in str(exc.orig):
                raise
            raise DuplicateKey(f"Asset tag already exists: {tag}") from None

    def get(self, asset_id):
        item = self.db.session.get(Asset, asset_id)
        return asset_to_dict(item) if item else None

    def find(self, tag):
        key = normalize_key(tag)
        if not key:
            return None
        item = Asset.query.filter_by(tag_key=key).first()
        return asset_to_dict(item) if item else None

    def find_all(self):
        return [asset_to_dict(item) for item in Asset.query.order_by(Asset.id.asc()).all()]

    def find_by_serial(self, value):
        key = normalize_key(value)
        if not key:
            return None
        item = Asset.query.filter_by(serial_key=key).order_by(Asset.id.asc()).first()
        return asset_to_dict(item) if item else None

    def insert(self, record):
        item = Asset(**{name: record[name] for name in ASSET_FIELDS if name in record})
        _refresh_keys(item)
        self.db.session.add(item)
        self._commit(record.get("asset_tag"))
        return asset_to_dict(item)

    def update(self, asset_id, fields):
        item = self.db.session.get(Asset, asset_id)
        if item is None:
            raise NotFound(f"Asset {asset_id} not found")
        for name, value in fields.items():
            if name in ASSET_FIELDS:
                setattr(item, name, value)
        _refresh_keys(item)
        self._commit(fields.get("asset_tag"))
        return asset_to_dict(item)

    def delete(self, asset_id):
        item = self.db.session.get(Asset, asset_id)
        if item is None:
            raise NotFound(f"Asset {asset_id} not found")
        self.db.session.delete(item)
        self.db.session.commit()

    def get_user(self, user_id):
        return lookup_user(user_id)

    def add_activity(self, entry):
        row = Activity(
            action=entry["action"],
            entity_type=entry["entity_type"],
            entity_id=entry["entity_id"],
            user_id=entry["user_id"],
            created_at=entry["timestamp"],
            notes=entry["notes"],
        )
        self.db.session.add(row)
        try:
            self.db.session.commit()
        except Exception:
            self.db.session.rollback()
            raise
        return activity_to_dict(row)

    def list_activities(self, entity_type=None, entity_id=None, user_id=None):
        query_builder = Activity.query
        if entity_type is not None:
            query_builder = query_builder.filter_by(entity_type=entity_type)
        if entity_id is not None:
            query_builder = query_builder.filter_by(entity_id=entity_id)
        if user_id is not None:
            query_builder = query_builder.filter_by(user_id=user_id)
        return [activity_to_dict(row) for row in query_builder.order_by(Activity.id.asc()).all()]


def lookup_user(user_id):
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if not user:
        return None
    return {"id": user.id, "username": user.username}


def create_store(kind):
    if kind == "sql":
        return SqlAlchemyStore(db)
    if kind == "memory":
        return MemoryStore(user_lookup=lookup_user)
    raise ValueError(f"Unknown ASSET_STORE: {kind}")


def init_lifecycle():
    lifecycle = AssetLifecycle(
        create_store(app.config["ASSET_STORE"]),
        system_assignee_id=app.config["SYSTEM_ASSIGNEE_ID"],
    )
    app.extensions["asset_lifecycle"] = lifecycle
    app.extensions["asset_importer"] = BulkImporter(
        lifecycle,
        tag_prefix=app.config["ASSET_TAG_PREFIX"],
        default_category=app.config["DEFAULT_IMPORT_CATEGORY"],
    )
    app.logger.info("asset store initialised kind=%s", app.config["ASSET_STORE"])


init_lifecycle()


def get_lifecycle():
    return app.extensions["asset_lifecycle"]


def get_importer():
    return app.extensions["asset_importer"]


def ensure_default_users():
    if User.query.first():
        return
    users = [
        ("admin", "admin", "admin"),
        ("operator", "operator", "operator"),
        ("reader", "reader", "reader"),
    ]
    for username, password, role in users:
        db.session.add(
            User(
                username=username,
                password_hash=generate_password_hash(password),
                role=role,
            )
        )
    db.session.commit()


def ensure_indexes():
    statements = [
        "CREATE INDEX IF NOT EXISTS idx_asset_status ON asset(status)",
        "CREATE INDEX IF NOT EXISTS idx_asset_knox_id ON asset(knox_id)",
        "CREATE INDEX IF NOT EXISTS idx_asset_assigned_to ON asset(assigned_to)",
        "CREATE INDEX IF NOT EXISTS idx_activity_user_id ON activity(user_id)",
    ]
    for statement in statements:
        try:
            db.session.execute(text(statement))
        except Exception:
            app.logger.warning("Could not create index: %s", statement)
            db.session.rollback()
    db.session.commit()


@app.before_request
def init_db():
    global _DB_INIT_DONE
    if not _DB_INIT_DONE:
        db.create_all()
        ensure_default_users()
        ensure_indexes()
        _DB_INIT_DONE = True


def _parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(value, default):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_username(value):
    return (value or "").strip().lower()


def get_user_by_username_ci(username):
    if not username:
        return None
    return User.query.filter(func.lower(User.username) == username.lower()).first()


def _hash_token(token):
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _jwt_encode(payload, expires_in):
    now = datetime.datetime.utcnow()
    data = dict(payload)
    data.update(
        {
            "iat": now,
            "exp": now + datetime.timedelta(seconds=expires_in),
            "jti": secrets.token_hex(8),
        }
    )
    return jwt.encode(data, app.config["SECRET_KEY"], algorithm=JWT_ALGORITHM)


def _jwt_decode(token):
    return jwt.decode(token, app.config["SECRET_KEY"], algorithms=[JWT_ALGORITHM])


def _issue_tokens(user_id):
    access_token = _jwt_encode({"sub": str(user_id), "type": "access"}, JWT_ACCESS_SECONDS)
    refresh_token = _jwt_encode({"sub": str(user_id), "type": "refresh"}, JWT_REFRESH_SECONDS)
    refresh_entry = RefreshToken(
        user_id=user_id,
        token_hash=_hash_token(refresh_token),
        expires_at=datetime.datetime.utcnow() + datetime.timedelta(seconds=JWT_REFRESH_SECONDS),
    )
    db.session.add(refresh_entry)
    db.session.commit()
    return access_token, refresh_token


def _rotate_refresh_token(user_id, token_value):
    token_hash = _hash_token(token_value)
    entry = RefreshToken.query.filter_by(token_hash=token_hash, revoked=False).first()
    if not entry:
        return None, None
    if entry.expires_at < datetime.datetime.utcnow():
        entry.revoked = True
        db.session.commit()
        return None, None
    entry.revoked = True
    db.session.commit()
    return _issue_tokens(user_id)


def get_role_permissions(user):
    if not user:
        return set()
    return ROLE_PERMISSIONS.get(user.role, set())


def get_current_user():
    return getattr(request, "api_user", None)


def current_actor_id():
    user = get_current_user()
    return user.id if user else None


def api_auth_required(permission=None):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            auth_header = request.headers.get("Authorization", "")
            if not auth_header.startswith("Bearer "):
                return jsonify({"error": "Missing token"}), 401
            token = auth_header.split(" ", 1)[1].strip()
            try:
                payload = _jwt_decode(token)
            except jwt.PyJWTError:
                return jsonify({"error": "Invalid token"}), 401
            if payload.get("type") != "access":
                return jsonify({"error": "Invalid token type"}), 401
            user_id = _parse_int(payload.get("sub"), None)
            user = db.session.get(User, user_id) if user_id else None
            if not user:
                return jsonify({"error": "User not found"}), 401
            request.api_user = user
            if permission and permission not in get_role_permissions(user):
                return jsonify({"error": "Forbidden"}), 403
            return view(*args, **kwargs)
        return wrapped
    return decorator


def _format_value(value):
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return value


def serialize_asset(record):
    row = {name: _format_value(value) for name, value in record.items()}
    row["status_label"] = format_status_label(record.get("status"))
    return row


def serialize_activity(entry):
    return {name: _format_value(value) for name, value in entry.items()}


def _payload_fields(payload):
    data = {}
    for key, value in payload.items():
        if key in EDITABLE_FIELDS:
            field_name = key
        elif normalize_header(key) == "financeupdated":
            field_name = "finance_updated"
        else:
            field_name = IMPORT_HEADER_MAP.get(normalize_header(key))
        if not field_name:
            continue
        if field_name == "finance_updated":
            value = _parse_bool(value)
        data[field_name] = value
    return data


@app.route("/api/auth/login", methods=["POST"])
def api_login():
    payload = request.get_json(silent=True) or {}
    username = normalize_username(payload.get("username", ""))
    password = payload.get("password", "")
    if not username or not password:
        return jsonify({"error": "Missing credentials"}), 400
    user = get_user_by_username_ci(username)
    if not user or not check_password_hash(user.password_hash, password):
        app.logger.warning("login_failed user=%s ip=%s", username, request.remote_addr or "-")
        return jsonify({"error": "Invalid username or password"}), 401
    access_token, refresh_token = _issue_tokens(user.id)
    app.logger.info("login user=%s ip=%s", user.username, request.remote_addr or "-")
    return jsonify(
        {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "Bearer",
            "expires_in": JWT_ACCESS_SECONDS,
        }
    )


@app.route("/api/auth/refresh", methods=["POST"])
def api_refresh():
    payload = request.get_json(silent=True) or {}
    refresh_token = payload.get("refresh_token", "")
    if not refresh_token:
        return jsonify({"error": "Missing refresh token"}), 400
    try:
        decoded = _jwt_decode(refresh_token)
    except jwt.PyJWTError:
        return jsonify({"error": "Invalid refresh token"}), 401
    if decoded.get("type") != "refresh":
        return jsonify({"error": "Invalid token type"}), 401
    user_id = _parse_int(decoded.get("sub"), None)
    user = db.session.get(User, user_id) if user_id else None
    if not user:
        return jsonify({"error": "User not found"}), 401
    access_token, new_refresh = _rotate_refresh_token(user.id, refresh_token)
    if not access_token:
        return jsonify({"error": "Refresh expired"}), 401
    return jsonify(
        {
            "access_token": access_token,
            "refresh_token": new_refresh,
            "token_type": "Bearer",
            "expires_in": JWT_ACCESS_SECONDS,
        }
    )


@app.route("/api/assets", methods=["GET"])
@api_auth_required(permission="can_read")
def api_assets_list():
    page = max(_parse_int(request.args.get("page", ""), 1), 1)
    per_page = max(min(_parse_int(request.args.get("per_page", ""), DEFAULT_PAGE_SIZE), 200), 1)
    records = get_lifecycle().list_assets(
        status=request.args.get("status") if request.args.get("status") != "all" else None,
        query=request.args.get("q"),
    )
    items = records[(page - 1) * per_page:page * per_page]
    return jsonify(
        {
            "items": [serialize_asset(record) for record in items],
            "page": page,
            "per_page": per_page,
            "total": len(records),
        }
    )


@app.route("/api/assets/stats", methods=["GET"])
@api_auth_required(permission="can_read")
def api_assets_stats():
    return jsonify(get_lifecycle().stats())


@app.route("/api/assets/<int:asset_id>", methods=["GET"])
@api_auth_required(permission="can_read")
def api_assets_get(asset_id):
    return jsonify(serialize_asset(get_lifecycle().get_asset(asset_id)))


@app.route("/api/assets", methods=["POST"])
@api_auth_required(permission="can_add")
def api_assets_create():
    payload = request.get_json(silent=True) or {}
    record = get_lifecycle().create_asset(_payload_fields(payload), actor_id=current_actor_id())
    return jsonify(serialize_asset(record)), 201


@app.route("/api/assets/<int:asset_id>", methods=["PATCH", "PUT"])
@api_auth_required(permission="can_add")
def api_assets_update(asset_id):
    payload = request.get_json(silent=True) or {}
    record = get_lifecycle().apply_edit(
        asset_id, _payload_fields(payload), actor_id=current_actor_id()
    )
    return jsonify(serialize_asset(record))


@app.route("/api/assets/<int:asset_id>", methods=["DELETE"])
@api_auth_required(permission="can_delete")
def api_assets_delete(asset_id):
    get_lifecycle().delete(asset_id, actor_id=current_actor_id())
    return jsonify({"status": "deleted"})


@app.route("/api/assets/<int:asset_id>/checkout", methods=["POST"])
@api_auth_required(permission="can_add")
def api_assets_checkout(asset_id):
    payload = request.get_json(silent=True) or {}
    assignee_id = _parse_int(payload.get("assignee_id", payload.get("userId")), None)
    if assignee_id is None:
        return jsonify({"error": "User ID is required"}), 400
    record = get_lifecycle().checkout(
        asset_id,
        assignee_id,
        expected_checkin_date=payload.get("expected_checkin_date", payload.get("expectedCheckinDate")),
        note=payload.get("notes"),
        actor_id=current_actor_id(),
        knox_id=payload.get("knox_id", payload.get("knoxId")),
    )
    return jsonify(serialize_asset(record))


@app.route("/api/assets/<int:asset_id>/checkin", methods=["POST"])
@api_auth_required(permission="can_add")
def api_assets_checkin(asset_id):
    payload = request.get_json(silent=True) or {}
    record = get_lifecycle().checkin(
        asset_id, actor_id=current_actor_id(), note=payload.get("notes")
    )
    return jsonify(serialize_asset(record))


@app.route("/api/assets/<int:asset_id>/overdue", methods=["POST"])
@api_auth_required(permission="can_add")
def api_assets_mark_overdue(asset_id):
    record = get_lifecycle().mark_overdue(asset_id, actor_id=current_actor_id())
    return jsonify(serialize_asset(record))


@app.route("/api/assets/<int:asset_id>/activity", methods=["GET"])
@api_auth_required(permission="can_read")
def api_asset_activity(asset_id):
    get_lifecycle().get_asset(asset_id)
    return jsonify([serialize_activity(entry) for entry in get_lifecycle().history(asset_id)])


@app.route("/api/activities", methods=["GET"])
@api_auth_required(permission="can_read")
def api_activities():
    user_id = _parse_int(request.args.get("user_id"), None)
    entries = get_lifecycle().activity.entries(user_id=user_id)
    return jsonify([serialize_activity(entry) for entry in entries])


def _read_uploaded_rows(upload):
    filename = (upload.filename or "").lower()
    if filename.endswith(".csv"):
        return rows_from_csv(io.StringIO(upload.read().decode("utf-8-sig")))
    if filename.endswith(".xlsx"):
        return rows_from_workbook(io.BytesIO(upload.read()))
    return None


def _import_error(message, error):
    return jsonify(
        {
            "message": message,
            "total": 0,
            "successful": 0,
            "updated": 0,
            "failed": 0,
            "errors": [error],
        }
    ), 400


@app.route("/api/assets/import", methods=["POST"])
@api_auth_required(permission="can_import")
def api_assets_import():
    if "file" in request.files:
        upload = request.files["file"]
        if not upload or not upload.filename:
            return _import_error("No file selected.", "Upload a .csv or .xlsx file")
        try:
            rows = _read_uploaded_rows(upload)
        except (UnicodeDecodeError, zipfile.BadZipFile, InvalidFileException, csv.Error) as exc:
            app.logger.warning("import upload unreadable file=%s error=%s", upload.filename, exc)
            return _import_error("Could not read the uploaded file.", str(exc))
        if rows is None:
            return _import_error("Unsupported file type.", "Upload a .csv or .xlsx file")
    else:
        payload = request.get_json(silent=True) or {}
        rows = payload.get("assets")
        if not isinstance(rows, list):
            return _import_error(
                "Invalid request format. Expected an array of assets.",
                "Request body must contain an 'assets' array",
            )
    if not rows:
        return _import_error("No assets to import", "No assets provided in the request")
    if not all(isinstance(row, dict) for row in rows):
        return _import_error(
            "Invalid request format. Expected an array of assets.",
            "Each asset must be an object",
        )
    outcome, assets = get_importer().import_rows(rows, actor_id=current_actor_id())
    body = outcome_to_dict(outcome)
    body["assets"] = [serialize_asset(record) for record in assets]
    return jsonify(body), 200 if outcome.failed else 201


@app.route("/api/assets/cleanup-knox", methods=["POST"])
@api_auth_required(permission="can_add")
def api_assets_cleanup_knox():
    count = get_lifecycle().cleanup_knox_ids(actor_id=current_actor_id())
    return jsonify({"message": f"Cleaned up Knox IDs for {count} assets", "count": count})


@app.route("/api/assets/sweep-overdue", methods=["POST"])
@api_auth_required(permission="can_add")
def api_assets_sweep_overdue():
    payload = request.get_json(silent=True) or {}
    marked = get_lifecycle().sweep_overdue(
        today=payload.get("today"), actor_id=current_actor_id()
    )
    return jsonify(
        {"count": len(marked), "assets": [serialize_asset(record) for record in marked]}
    )


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000)
