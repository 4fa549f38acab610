"""Flask application factory."""
from flask import Flask, jsonify, request
from flask_wtf.csrf import CSRFProtect, CSRFError
from rentals.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize CSRF protection
    CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'Session expired or invalid CSRF token. Reload and try again.'}), 400

    # Error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            profiles_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache
    from rentals.services.cache_service import init_cache
    init_cache(app)

    # Prometheus request metrics
    from rentals.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust X-Forwarded-* headers from the reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Formatting filters for any rendered receipts
    from rentals.utils.formatters import format_currency, format_currency_compact, format_date, format_datetime
    app.jinja_env.filters['currency'] = format_currency
    app.jinja_env.filters['currency_compact'] = format_currency_compact
    app.jinja_env.filters['date'] = format_date
    app.jinja_env.filters['datetime'] = format_datetime

    from rentals.middleware import load_current_user

    @app.before_request
    def before_request_handler():
        """Load user and branch context for each request."""
        load_current_user()

    # Error Handlers
    from rentals.exceptions import RentalError

    @app.errorhandler(RentalError)
    def handle_rental_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"RentalError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"RentalError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'status': 'error', 'message': 'Method Not Allowed'}), 405

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        from werkzeug.exceptions import HTTPException
        if isinstance(error, HTTPException) and error.code and error.code < 500:
            return jsonify({'status': 'error', 'message': error.description}), error.code
        app.logger.exception(f"Unhandled Exception on {request.method} {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from rentals.blueprints.auth import auth_bp
    from rentals.blueprints.main import main_bp
    from rentals.blueprints.metrics import metrics_bp
    from rentals.blueprints.dashboard import dashboard_bp
    from rentals.blueprints.customers import customers_bp
    from rentals.blueprints.orders import orders_bp
    from rentals.blueprints.staff import staff_bp
    from rentals.blueprints.branches import branches_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(staff_bp)
    app.register_blueprint(branches_bp)

    # Register CLI commands
    from rentals.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
