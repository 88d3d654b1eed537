"""Shared Flask extensions for the barbershop backend."""
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy database instance shared by models, services and routes.
db = SQLAlchemy()
