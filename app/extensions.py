"""
Flask extensions initialization.
"""
from flask_caching import Cache
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Database
db = SQLAlchemy()

# Migrations
migrate = Migrate()

# Catalog list cache - configured in utils.cache.init_cache()
cache = Cache()
