"""
Flask application factory.

Creates the app, wires the Orchestrator, registers blueprints and CLI commands.
"""
import logging

import click
from flask import Flask, jsonify

from orchestrator.errors import OrchestratorError

logger = logging.getLogger('app')


def create_app(orchestrator=None):
    """Create and configure the Flask application."""
    from orchestrator.logging_config import configure_logging
    from orchestrator.engine import Orchestrator

    app = Flask(__name__)
    configure_logging(app)

    if orchestrator is None:
        orchestrator = Orchestrator.build_default()
    app.extensions['orchestrator'] = orchestrator

    # Register blueprints
    from orchestrator.routes.api import bp as api_bp
    from orchestrator.routes.health import bp as health_bp
    from orchestrator.routes.webhook import bp as webhook_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(webhook_bp)

    # Initialize circuit breakers for outbound services
    from orchestrator.extensions import redis_client
    from orchestrator.services.circuit_breaker import init_breakers
    init_breakers(redis_client)

    @app.errorhandler(OrchestratorError)
    def handle_orchestrator_error(error):
        if error.status_code >= 500:
            logger.error("Unhandled orchestrator error: %s", error, exc_info=error)
        return jsonify({'error': str(error), 'type': type(error).__name__}), error.status_code

    _register_commands(app)
    return app


def _register_commands(app):

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables (local dev; production uses `alembic upgrade head`)."""
        from orchestrator.database import init_db
        init_db()
        added = app.extensions['orchestrator'].store.seed_stage_config()
        click.echo(f"Schema ready ({added} pipeline stages seeded)")

    @app.cli.command('seed')
    def seed_command():
        """Load fixture leads, tasks and rules."""
        from orchestrator.seed import load_seed_data
        engine = app.extensions['orchestrator']
        counts = load_seed_data(engine.store, engine.scheduler)
        click.echo(f"Seeded {counts['leads']} leads, {counts['tasks']} tasks, {counts['rules']} rules")

    @app.cli.command('reconcile')
    @click.option('--interval', type=int, default=None, help='Seconds between ticks')
    @click.option('--once', is_flag=True, help='Run a single tick and exit')
    def reconcile_command(interval, once):
        """Run the reconciliation loop until SIGTERM / SIGINT."""
        from orchestrator.config import RECONCILE_INTERVAL
        from orchestrator.scheduler.loop import ReconcileLoop

        scheduler = app.extensions['orchestrator'].scheduler
        if once:
            result = scheduler.reconcile()
            click.echo(result.to_dict())
            return
        ReconcileLoop(scheduler, interval or RECONCILE_INTERVAL).run()
