"""Shopify Admin REST integration (OAuth install and order actions)"""
