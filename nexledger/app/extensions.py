"""
extensions.py — Flask extension singletons.

`db` and `ma` are created unbound and attached to an app by create_app()
via init_app(). Models, the SQL debt store and the routes import them from
here; binding at import time would tie every test to a single app.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Request schemas (app/schemas/) subclass marshmallow.Schema, not ma.Schema:
# ma.Schema needs an application context, and tests/unit/ loads the expense
# and settlement schemas without one.
ma = Marshmallow()
