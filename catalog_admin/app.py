import os
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import urljoin

import bcrypt
from dotenv import load_dotenv
from flask import Flask, jsonify, redirect, render_template, request, send_from_directory, url_for
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
    verify_jwt_in_request,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_pymongo import PyMongo
from jwt.exceptions import PyJWTError
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from werkzeug.middleware.proxy_fix import ProxyFix

from .access import (
    ACCESS_DENIED_MESSAGE,
    CONFIGURATION_ERROR_MESSAGE,
    AccessState,
    SignInError,
    normalize_email,
    resolve_access_state,
)
from .catalog import IMAGE_URL_FIELDS, ProductFormController
from .dashboard import DashboardView
from .schemas import (
    AVAILABLE_SIZES,
    ORDER_STATUSES,
    PRESET_COLORS,
    OrderStatusUpdate,
    TaxonomyEntry,
    field_errors,
)
from .store import CatalogStore, to_object_id
from .uploads import ObjectStorage, UploadError, UploadInProgressError, UploadSideChannel

load_dotenv()


def create_app(test_config: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Honor proxy headers so uploaded image links keep the public HTTPS origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["ADMIN_EMAIL"] = os.getenv("ADMIN_EMAIL", "")
    app.config["ADMIN_PASSWORD"] = os.getenv("ADMIN_PASSWORD", "")
    app.config["ADMIN_NAME"] = os.getenv("ADMIN_NAME", "Store Admin") or "Store Admin"
    app.config["JWT_SECRET_KEY"] = os.getenv(
        "JWT_SECRET_KEY", "change-me-in-production"
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=1)
    app.config["JWT_TOKEN_LOCATION"] = ["headers", "cookies"]
    app.config["JWT_COOKIE_SECURE"] = (
        os.getenv("JWT_COOKIE_SECURE", "false").strip().lower() == "true"
    )
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/catalog"
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.getenv("UPLOAD_FOLDER") or os.path.join(
        app.root_path, "uploads"
    )
    app.config["PRODUCT_ALLOWED_EXTENSIONS"] = {"png", "jpg", "jpeg", "gif", "webp"}

    if test_config:
        app.config.update(test_config)
    app.config["ADMIN_EMAIL"] = normalize_email(app.config.get("ADMIN_EMAIL"))

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")

    JWTManager(app)
    if database is None:
        mongo = PyMongo(app)
        database = mongo.db
    db = database

    if not app.config["ADMIN_EMAIL"]:
        app.logger.warning("ADMIN_EMAIL is not set; admin sign-in is disabled.")

    # --- Helpers ---

    def build_upload_url(object_path: Optional[str]) -> str:
        if not object_path:
            return ""

        sanitized = str(object_path).strip()
        if not sanitized:
            return ""

        return urljoin(request.host_url, f"uploads/{sanitized}")

    store = CatalogStore(db, logger=app.logger)
    storage = ObjectStorage(app.config["UPLOAD_FOLDER"], build_upload_url)
    upload_channel = UploadSideChannel(
        storage,
        allowed_extensions=app.config["PRODUCT_ALLOWED_EXTENSIONS"],
        logger=app.logger,
    )
    app.extensions["catalog_store"] = store
    app.extensions["upload_side_channel"] = upload_channel

    def admin_email() -> str:
        return app.config.get("ADMIN_EMAIL") or ""

    def serialize_timestamp(value):
        return value.isoformat() + "Z" if isinstance(value, datetime) else None

    def serialize_product(product_document, sales_count=None):
        if not product_document:
            return None

        product_id = str(product_document.get("_id"))
        images = product_document.get("images")
        return {
            "id": product_id,
            "name": product_document.get("name", ""),
            "slug": product_document.get("slug", ""),
            "description": product_document.get("description", ""),
            "category": product_document.get("category", ""),
            "style": product_document.get("style"),
            "price": product_document.get("price", 0),
            "originalPrice": product_document.get("originalPrice"),
            "images": images if isinstance(images, list) else [],
            "sizes": product_document.get("sizes") or [],
            "availableColors": product_document.get("availableColors") or [],
            "isFeatured": bool(product_document.get("isFeatured")),
            "createdAt": serialize_timestamp(product_document.get("createdAt")),
            "updatedAt": serialize_timestamp(product_document.get("updatedAt")),
            "sales": int((sales_count or {}).get(product_id, 0)),
        }

    def serialize_taxonomy(document):
        return {"id": str(document.get("_id")), "name": document.get("name", "")}

    def serialize_order(order_document):
        if not order_document:
            return None

        address = order_document.get("shippingAddress")
        if not isinstance(address, dict):
            address = {}
        lines = order_document.get("products")
        if not isinstance(lines, list):
            lines = []

        return {
            "id": str(order_document.get("_id")),
            "customerName": order_document.get("customerName") or "",
            "customerEmail": order_document.get("customerEmail") or "",
            "products": [
                {
                    "id": str(line.get("id", "")),
                    "name": line.get("name", ""),
                    "quantity": line.get("quantity", 0),
                }
                for line in lines
                if isinstance(line, dict)
            ],
            "totalAmount": order_document.get("totalAmount", 0),
            "shippingAddress": {
                "description": address.get("description", ""),
                "region": address.get("region", ""),
                "county": address.get("county", ""),
            },
            "status": order_document.get("status", "pending"),
            "createdAt": serialize_timestamp(order_document.get("createdAt")),
        }

    def current_identity() -> Optional[str]:
        try:
            verify_jwt_in_request(optional=True)
        except (JWTExtendedException, PyJWTError) as exc:
            app.logger.info("Ignoring unusable access token: %s", exc)
            return None
        return get_jwt_identity()

    def require_admin_user():
        if not admin_email():
            return None, (jsonify({"message": CONFIGURATION_ERROR_MESSAGE}), 503)

        current_email = normalize_email(get_jwt_identity())
        state = resolve_access_state(current_email, admin_email())
        if state is AccessState.AUTHORIZED:
            return current_email, None

        return None, (jsonify({"message": ACCESS_DENIED_MESSAGE}), 403)

    def ensure_admin_account():
        password = app.config.get("ADMIN_PASSWORD") or ""
        email = admin_email()
        if not email or not password:
            return

        if db.users.find_one({"email": email}):
            return

        db.users.insert_one(
            {
                "email": email,
                "name": app.config.get("ADMIN_NAME") or "",
                "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()),
                "createdAt": datetime.utcnow(),
            }
        )
        app.logger.info("Created admin account for %s", email)

    def authenticate(email: str, password: str):
        try:
            ensure_admin_account()
            user = db.users.find_one({"email": email})
        except PyMongoError as exc:
            raise SignInError(SignInError.OTHER, str(exc)) from exc

        stored_hash = user.get("password") if user else None
        if isinstance(stored_hash, str):
            stored_hash = stored_hash.encode("utf-8")
        if not stored_hash or not bcrypt.checkpw(password.encode("utf-8"), stored_hash):
            raise SignInError(SignInError.INVALID_CREDENTIALS)
        return user

    def fetch_document(collection: str, document_id: str, label: str):
        object_id = to_object_id(document_id)
        if object_id is None:
            return None, (jsonify({"message": f"Invalid {label} identifier."}), 400)

        document = db[collection].find_one({"_id": object_id})
        if not document:
            return None, (jsonify({"message": f"{label.capitalize()} not found."}), 404)

        return document, None

    def build_dashboard() -> DashboardView:
        return DashboardView(db, store, logger=app.logger).refresh()

    def serialize_dashboard(dashboard: DashboardView) -> Dict:
        def section(live_collection, serializer):
            data = live_collection.data or []
            return {
                "isLoading": live_collection.is_loading,
                "items": [serializer(document) for document in data],
            }

        return {
            "products": section(
                dashboard.products,
                lambda document: serialize_product(document, dashboard.sales_count),
            ),
            "categories": {
                "isLoading": dashboard.categories.is_loading,
                "items": [serialize_taxonomy(c) for c in dashboard.sorted_categories],
            },
            "styles": {
                "isLoading": dashboard.styles.is_loading,
                "items": [serialize_taxonomy(s) for s in dashboard.sorted_styles],
            },
            "orders": section(dashboard.orders, serialize_order),
            "salesCount": dashboard.sales_count,
            "options": {
                "sizes": AVAILABLE_SIZES,
                "colors": PRESET_COLORS,
                "statuses": ORDER_STATUSES,
            },
        }

    def confirmation_given(payload: Dict) -> bool:
        raw_value = payload.get("confirm", request.args.get("confirm"))
        if isinstance(raw_value, bool):
            return raw_value
        return str(raw_value or "").strip().lower() in {"1", "true", "yes"}

    @app.template_filter("order_date")
    def format_order_date(value):
        if not isinstance(value, datetime):
            return "N/A"
        return value.strftime("%B %d, %Y")

    # --- ROUTES ---

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    @app.route("/")
    def index():
        return redirect(url_for("admin_dashboard"))

    @app.route("/admin-dashboard", methods=["GET"])
    def admin_dashboard():
        identity = current_identity()
        state = resolve_access_state(identity, admin_email())
        context = {
            "state": state.value,
            "identity": identity,
            "configuration_error": None if admin_email() else CONFIGURATION_ERROR_MESSAGE,
            "access_denied_message": ACCESS_DENIED_MESSAGE,
        }
        if state is AccessState.AUTHORIZED:
            dashboard = build_dashboard()
            context.update(
                {
                    "dashboard": dashboard,
                    "categories": dashboard.sorted_categories,
                    "styles": dashboard.sorted_styles,
                    "sizes": AVAILABLE_SIZES,
                    "colors": PRESET_COLORS,
                    "statuses": ORDER_STATUSES,
                    "image_fields": IMAGE_URL_FIELDS,
                }
            )
        return render_template("admin_dashboard.html", **context)

    # Auth
    @app.route("/api/login", methods=["POST"])
    def login():
        if not admin_email():
            return jsonify({"message": CONFIGURATION_ERROR_MESSAGE}), 503

        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password", ""))

        if not email or not password:
            return jsonify({"message": "Email and password are required."}), 400

        try:
            user = authenticate(email, password)
        except SignInError as exc:
            if exc.code == SignInError.INVALID_CREDENTIALS:
                return jsonify({"message": exc.user_message, "code": exc.code}), 401
            app.logger.error("Sign-in failed for %s: %s", email, exc.reason)
            return jsonify({"message": exc.user_message, "code": exc.code}), 500

        try:
            db.users.update_one(
                {"_id": user["_id"]}, {"$set": {"lastLoginAt": datetime.utcnow()}}
            )
        except PyMongoError as exc:
            app.logger.warning("Unable to record sign-in time for %s: %s", email, exc)

        token = create_access_token(identity=email)
        state = resolve_access_state(email, admin_email())
        response = jsonify(
            {
                "access_token": token,
                "user": {"email": email, "name": user.get("name", "") or ""},
                "state": state.value,
            }
        )
        set_access_cookies(response, token)
        return response

    @app.route("/api/logout", methods=["POST"])
    def logout():
        response = jsonify({"message": "Signed out.", "state": AccessState.UNAUTHENTICATED.value})
        unset_jwt_cookies(response)
        return response

    @app.route("/api/session", methods=["GET"])
    def session_state():
        identity = current_identity()
        state = resolve_access_state(identity, admin_email())
        return jsonify(
            {
                "state": state.value,
                "email": normalize_email(identity) or None,
                "adminConfigured": bool(admin_email()),
            }
        )

    # Dashboard
    @app.route("/api/dashboard", methods=["GET"])
    @jwt_required()
    def dashboard_snapshot():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        return jsonify(serialize_dashboard(build_dashboard()))

    # Products
    @app.route("/api/products", methods=["GET"])
    @jwt_required()
    def list_products():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        dashboard = build_dashboard()
        products = [
            serialize_product(document, dashboard.sales_count)
            for document in dashboard.products.data or []
        ]
        return jsonify({"products": products})

    @app.route("/api/products/<product_id>", methods=["GET"])
    @jwt_required()
    def get_product(product_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        product_document, load_error = fetch_document("products", product_id, "product")
        if load_error:
            return load_error
        return jsonify({"product": serialize_product(product_document)})

    def respond_with_submitted_product(controller, product_id, message, status_code):
        if controller.errors:
            return (
                jsonify(
                    {
                        "message": "Please correct the highlighted fields.",
                        "errors": controller.errors,
                    }
                ),
                400,
            )
        if not product_id:
            return jsonify({"message": "Product submitted.", "product": None}), 202

        saved = db.products.find_one({"_id": to_object_id(product_id)})
        return jsonify({"message": message, "product": serialize_product(saved)}), status_code

    @app.route("/api/products", methods=["POST"])
    @jwt_required()
    def create_product():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        controller = ProductFormController(store)
        controller.open_new()
        controller.update(payload)
        product_id = controller.submit()
        return respond_with_submitted_product(
            controller, product_id, "Product added successfully.", 201
        )

    @app.route("/api/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product_document, load_error = fetch_document("products", product_id, "product")
        if load_error:
            return load_error

        payload = request.get_json(silent=True) or {}
        controller = ProductFormController(store)
        controller.open_edit(product_document)
        controller.update(payload)
        saved_id = controller.submit()
        return respond_with_submitted_product(
            controller, saved_id, "Product updated successfully.", 200
        )

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        if not confirmation_given(payload):
            return (
                jsonify(
                    {
                        "message": "Please confirm that this product should be deleted.",
                        "requires_confirmation": True,
                    }
                ),
                400,
            )

        product_document, load_error = fetch_document("products", product_id, "product")
        if load_error:
            return load_error

        store.delete_document("products", product_document["_id"])
        return jsonify({"message": "Product removed successfully."})

    # Categories and styles
    def list_taxonomy_route(collection: str, key: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        dashboard = build_dashboard()
        documents = (
            dashboard.sorted_categories if collection == "categories" else dashboard.sorted_styles
        )
        return jsonify({key: [serialize_taxonomy(document) for document in documents]})

    def create_taxonomy_route(collection: str, label: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        try:
            entry = TaxonomyEntry.model_validate({"name": payload.get("name")})
        except ValidationError as exc:
            return (
                jsonify(
                    {
                        "message": f"Please provide a {label} name.",
                        "errors": field_errors(exc),
                    }
                ),
                400,
            )

        inserted_id = store.add_document(collection, {"name": entry.name})
        return (
            jsonify(
                {
                    "message": f"{label.capitalize()} created successfully.",
                    label: {"id": inserted_id, "name": entry.name},
                }
            ),
            201,
        )

    def delete_taxonomy_route(collection: str, document_id: str, label: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        document, load_error = fetch_document(collection, document_id, label)
        if load_error:
            return load_error

        store.delete_document(collection, document["_id"])
        return jsonify(
            {
                "message": f'"{document.get("name", label)}" has been removed.',
                label: {"id": str(document["_id"])},
            }
        )

    @app.route("/api/categories", methods=["GET"])
    @jwt_required()
    def list_categories():
        return list_taxonomy_route("categories", "categories")

    @app.route("/api/categories", methods=["POST"])
    @jwt_required()
    def create_category():
        return create_taxonomy_route("categories", "category")

    @app.route("/api/categories/<category_id>", methods=["DELETE"])
    @jwt_required()
    def delete_category(category_id: str):
        return delete_taxonomy_route("categories", category_id, "category")

    @app.route("/api/styles", methods=["GET"])
    @jwt_required()
    def list_styles():
        return list_taxonomy_route("styles", "styles")

    @app.route("/api/styles", methods=["POST"])
    @jwt_required()
    def create_style():
        return create_taxonomy_route("styles", "style")

    @app.route("/api/styles/<style_id>", methods=["DELETE"])
    @jwt_required()
    def delete_style(style_id: str):
        return delete_taxonomy_route("styles", style_id, "style")

    # Uploads
    @app.route("/api/uploads", methods=["POST"])
    @jwt_required()
    def upload_product_image():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        image_file = request.files.get("image") or request.files.get("file")
        if not image_file or not image_file.filename:
            return jsonify({"message": "An image file is required."}), 400

        controller = ProductFormController(store)
        controller.open_new()
        controller.update({field: request.form.get(field, "") or "" for field in IMAGE_URL_FIELDS})
        assigned: Dict[str, Optional[str]] = {"field": None}

        def assign_to_first_empty_field(url: str):
            assigned["field"] = controller.assign_uploaded_url(url)

        try:
            download_url = upload_channel.upload(
                image_file.filename,
                image_file.stream,
                on_uploaded=assign_to_first_empty_field,
            )
        except UploadInProgressError as exc:
            return jsonify({"message": str(exc)}), 409
        except UploadError as exc:
            return jsonify({"message": str(exc)}), 400

        return (
            jsonify(
                {
                    "message": "Image uploaded."
                    if assigned["field"]
                    else "Image uploaded. All image fields are filled, copy the URL manually.",
                    "url": download_url,
                    "path": upload_channel.object_path,
                    "progress": upload_channel.progress,
                    "assignedField": assigned["field"],
                    "imageFields": {field: controller.values[field] for field in IMAGE_URL_FIELDS},
                }
            ),
            201,
        )

    @app.route("/api/uploads/status", methods=["GET"])
    @jwt_required()
    def upload_status():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        return jsonify(upload_channel.state())

    # Orders
    @app.route("/api/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error
        cursor = db.orders.find().sort([("createdAt", -1)])
        orders: List[Dict] = [serialize_order(document) for document in cursor]
        return jsonify({"orders": orders})

    @app.route("/api/orders/<order_id>/status", methods=["PUT"])
    @jwt_required()
    def update_order_status(order_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = request.get_json(silent=True) or {}
        try:
            update = OrderStatusUpdate.model_validate(payload)
        except ValidationError as exc:
            return (
                jsonify(
                    {
                        "message": "Status must be one of pending, shipped, delivered, or cancelled.",
                        "errors": field_errors(exc),
                    }
                ),
                400,
            )

        order_document, load_error = fetch_document("orders", order_id, "order")
        if load_error:
            return load_error

        store.update_document("orders", order_document["_id"], {"status": update.status})
        order_identifier = str(order_document["_id"])
        return jsonify(
            {
                "message": f"Order {order_identifier[:6]}... has been set to {update.status}.",
                "order": {"id": order_identifier, "status": update.status},
            }
        )

    return app


app = create_app()


@app.route("/health")
def health():
    return {"status": "ok"}, 200


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
