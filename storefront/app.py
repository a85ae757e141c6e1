import logging
import time

from quart import Quart, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .common.config import settings
from .common.database import init_db
from .common.errors import ApiError
from .common.policy import enforce, public, required_capability
from .cart.controller import bp as cart_bp
from .categories.controller import bp as categories_bp
from .orders.controller import bp as orders_bp
from .products.controller import bp as products_bp
from .seed import seed
from .reviews.controller import bp as reviews_bp
from .users.controller import bp as users_bp
from .users.tokens import bearer_token, resolve_token
from .wishlist.controller import bp as wishlist_bp

# Prometheus metrics
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


log = logging.getLogger(__name__)

# Basic metrics with proper buckets for latency
REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"])
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, float("inf"))
)


def _metrics_endpoint() -> str:
    # Group dynamic routes under their rule to keep label cardinality bounded
    rule = request.url_rule
    return rule.rule if rule is not None else "<unmatched>"


def create_app() -> Quart:
    app = Quart(__name__)

    # Blueprints
    app.register_blueprint(users_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(reviews_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(wishlist_bp)
    app.register_blueprint(orders_bp)

    @app.before_request
    async def before_request():
        # Store start time
        g.start_time = time.time()
        # Log instance handling the request
        log.info("[Instance %s] %s %s", settings.INSTANCE_ID, request.method, request.path)

        g.user, g.token_id = None, None
        raw = bearer_token(request.headers.get("Authorization"))
        if raw:
            resolved = await resolve_token(raw)
            if resolved is not None:
                g.user, g.token_id = resolved

        view = app.view_functions.get(request.endpoint) if request.endpoint else None
        enforce(g.user, required_capability(view))

    @app.after_request
    async def after_request(response):
        start = g.get("start_time")
        if start is not None:
            endpoint = _metrics_endpoint()
            REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start)
            REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=str(response.status_code)).inc()
        # Add instance header to response
        response.headers["X-Instance-ID"] = settings.INSTANCE_ID
        return response

    @app.errorhandler(ApiError)
    async def handle_api_error(e: ApiError):
        return jsonify(e.to_dict(debug=settings.APP_DEBUG)), e.status_code

    @app.errorhandler(HTTPException)
    async def handle_http_error(e: HTTPException):
        return jsonify({"message": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    async def handle_unexpected(e: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.path)
        body = {"message": "Internal server error"}
        if settings.APP_DEBUG:
            body["error"] = str(e)
        return jsonify(body), 500

    @app.get("/metrics")
    @public
    async def metrics():
        data = generate_latest()
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    @app.get("/health")
    @public
    async def health():
        return jsonify({"status": "ok"})

    @app.before_serving
    async def startup():
        logging.basicConfig(level=settings.LOG_LEVEL)
        log.info("Initializing database...")
        await init_db()
        log.info("Database ready.")
        if settings.SEED_ON_STARTUP:
            await seed()

    return app
