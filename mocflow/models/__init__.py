"""
MOC Workflow Platform
SQLAlchemy extension instance shared by all models.

Usage:
    from mocflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
