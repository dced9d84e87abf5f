"""Gmail integration: REST client, message parsing, delta sync and polling"""
