from flask import Flask

from marksync.api import api_bp
from marksync.config import Config
from marksync.extensions import db, login_manager, migrate
from marksync.services.notifier import build_notifier


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.register_blueprint(api_bp)
    app.extensions["marksync_notifier"] = build_notifier(app)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized MarkSync database.")

    with app.app_context():
        db.create_all()

    return app
