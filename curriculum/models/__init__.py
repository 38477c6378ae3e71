"""
Curriculum lifecycle service data models.

The shared ``db`` handle lives here so every model module and the app
factory bind to the same Flask-SQLAlchemy instance.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
