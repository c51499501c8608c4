# ==============================
# IMPORTS
# ==============================
import logging
import os

import click
from flask import Flask
from flask_migrate import Migrate

from auth import auth_bp, create_account
from errors import register_error_handlers
from models import db
from routes import IdConverter, api
from schemas import UserCreate, parse
from storage import SQLStorage

DEFAULT_CATEGORIES = [
    "All", "Gaming", "Music", "Tech Reviews", "Cooking",
    "Tutorials", "Vlogs", "Comedy", "Sports", "Travel",
]

migrate = Migrate()


# ==============================
# APP CONFIGURATION
# ==============================
def database_url():
    url = os.environ.get("DATABASE_URL")
    if url and url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url or "sqlite:///streamtube.db"


def configure(app, test_config=None):
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret")

    # Database configuration
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url()
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["CREATE_TABLES"] = os.environ.get("CREATE_TABLES", "1") != "0"

    # API behaviour
    app.config["SESSION_TTL_HOURS"] = int(os.environ.get("SESSION_TTL_HOURS", 24 * 7))
    app.config["DEFAULT_PAGE_SIZE"] = 20
    app.config["MAX_PAGE_SIZE"] = 100
    app.config["ALL_CATEGORY_ID"] = 1
    app.config["DEFAULT_CATEGORIES"] = DEFAULT_CATEGORIES
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO")

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config["LOG_LEVEL"])


# ==============================
# APP FACTORY
# ==============================
def create_app(test_config=None, storage=None):
    app = Flask(__name__)
    configure(app, test_config)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    app.extensions["storage"] = storage or SQLStorage(
        all_category_id=app.config["ALL_CATEGORY_ID"]
    )

    app.url_map.converters["id"] = IdConverter
    app.register_blueprint(auth_bp)
    app.register_blueprint(api)
    register_error_handlers(app)
    register_commands(app)

    if app.config["CREATE_TABLES"]:
        with app.app_context():
            db.create_all()
            app.extensions["storage"].seed_categories(app.config["DEFAULT_CATEGORIES"])

    return app


# ==============================
# CLI COMMANDS
# ==============================
def register_commands(app):
    @app.cli.command("seed-categories")
    def seed_categories():
        """Create the default categories that are missing."""
        added = app.extensions["storage"].seed_categories(app.config["DEFAULT_CATEGORIES"])
        click.echo(f"Added {len(added)} categories.")

    @app.cli.command("create-user")
    @click.argument("username")
    @click.argument("password")
    @click.option("--display-name", default=None)
    def create_user(username, password, display_name):
        """Create a user account."""
        if app.extensions["storage"].get_user_by_username(username):
            click.echo("User already exists.")
            return
        data = parse(UserCreate, {
            "username": username,
            "password": password,
            "displayName": display_name,
        })
        user = create_account(data)
        click.echo(f"Created user {user.username} (id={user.id}).")


# =====================================================
# RUN APP
# =====================================================
if __name__ == "__main__":
    create_app().run(debug=True)
