"""
Tenant model for multi-shop installs.
"""
from datetime import datetime
from ..extensions import db


class Tenant(db.Model):
    """
    Shopify shop that installed the app.
    Global table - shared across all tenants.
    """
    __tablename__ = 'tenants'

    id = db.Column(db.Integer, primary_key=True)
    shop_name = db.Column(db.String(255), nullable=False)
    shop_slug = db.Column(db.String(100), unique=True, nullable=False)

    # Shopify integration
    shopify_domain = db.Column(db.String(255), index=True)
    shopify_access_token = db.Column(db.Text)  # Encrypted in production
    currency_code = db.Column(db.String(3), default='USD')

    # Settings (JSON for flexibility)
    settings = db.Column(db.JSON, default=dict)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    pricing_rules = db.relationship('PricingRule', backref='tenant', lazy='dynamic')

    def __repr__(self):
        return f'<Tenant {self.shop_slug}>'

    def to_dict(self):
        return {
            'id': self.id,
            'shop_name': self.shop_name,
            'shop_slug': self.shop_slug,
            'shopify_domain': self.shopify_domain,
            'currency_code': self.currency_code,
            'is_active': self.is_active
        }
