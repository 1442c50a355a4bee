import os

import psycopg2
from flask import Flask


def create_app(payments=None):
    """Build the nominations app.

    ``payments`` replaces the default ``PaymentGateway`` (configured from
    PAYMENTS_BASE_URL), mainly so tests can inject a mock transport.
    """
    if not os.environ.get("DATABASE_URL"):
        raise RuntimeError("DATABASE_URL is required; nominations are stored in PostgreSQL.")

    app = Flask(__name__)

    from . import datastore_pg as _pg
    pool_size = (_pg._env_int("DB_POOL_MIN", 1), _pg._env_int("DB_POOL_MAX", 10))
    try:
        _pg.init_pool(*pool_size)
    except psycopg2.Error:
        # Every query falls back to a direct connection
        app.logger.exception("Connection pool (min=%s, max=%s) unavailable", *pool_size)

    from . import routes
    from .payments import PaymentGateway
    from .realtime import changes

    app.register_blueprint(routes.bp)
    app.extensions["raceclub.payments"] = payments or PaymentGateway()
    app.extensions["raceclub.unsubscribe"] = changes.subscribe(routes.on_change)

    app.logger.info("Nominations app ready (pool=%s)", "on" if _pg._POOL is not None else "off")
    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
