from .admin import admin_bp
from .auth import auth_bp, google_bp
from .cart import cart_bp
from .catalog import catalog_bp, search_bp
from .orders import orders_bp
from .payments import payments_bp
from .wishlist import wishlist_bp

BLUEPRINTS = (
    auth_bp,
    google_bp,
    catalog_bp,
    search_bp,
    cart_bp,
    wishlist_bp,
    orders_bp,
    payments_bp,
    admin_bp,
)


def register_blueprints(app):
    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)
