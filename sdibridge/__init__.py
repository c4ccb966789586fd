"""SDI Bridge - Shopify to SDI e-invoicing bridge"""
