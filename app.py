import logging
import os

from flask import Flask, g
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import config_by_name
from cyclic_events import start_scheduler
from definitions import Base
from routes import routes_blueprint

logger = logging.getLogger(__name__)


def _create_engine(app):
    url = app.config['SQLALCHEMY_DATABASE_URI']
    options = {'echo': app.config.get('SQLALCHEMY_ECHO', False)}
    if url.startswith('sqlite') and ':memory:' in url:
        # one shared connection, or every session would see its own empty database
        options.update(poolclass=StaticPool, connect_args={'check_same_thread': False})
    elif not url.startswith('sqlite'):
        options.update(pool_pre_ping=True, pool_recycle=1800)
    return create_engine(url, **options)


def create_app(config_name=None, **overrides):
    config_name = config_name or os.environ.get('FLASK_CONFIG', 'production')

    # Flask application setup
    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Create engine and session
    engine = _create_engine(app)
    Session = sessionmaker(bind=engine)
    app.extensions['db_engine'] = engine
    app.extensions['db_session_factory'] = Session

    if app.config['CREATE_TABLES']:
        Base.metadata.create_all(engine)
        for table_name in Base.metadata.tables:
            logger.debug("table ready: %s", table_name)

    @app.before_request
    def create_session():
        g.db = Session()

    @app.teardown_request
    def close_session(exception=None):
        db = g.pop('db', None)
        if db is not None:
            if exception is not None:
                db.rollback()
            db.close()

    app.register_blueprint(routes_blueprint)

    if app.config['SCHEDULER_ENABLED']:
        app.extensions['scheduler'] = start_scheduler(
            Session,
            timezone=app.config['SCHEDULER_TIMEZONE'],
            hour=app.config['SWEEP_HOUR'],
            minute=app.config['SWEEP_MINUTE'],
        )

    return app


if __name__ == '__main__':
    create_app('development').run(threaded=True, use_reloader=False)  # Run Flask with threading enabled
