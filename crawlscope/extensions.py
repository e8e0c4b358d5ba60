"""
Flask Extensions Module

Extensions are initialized here and attached to the app in create_app().
"""

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()
