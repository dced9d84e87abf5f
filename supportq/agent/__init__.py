"""Action extraction, Shopify bridge and orchestration"""
