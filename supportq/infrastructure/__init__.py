"""Infrastructure - database, HTTP, retry, settings, auth"""
