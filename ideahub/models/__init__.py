"""
IdeaHub - SQLAlchemy models package.

The shared ``db`` handle lives here so every model module can do
``from ideahub.models import db`` without import cycles.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
