"""Shared helpers: HTML conversion, redaction, error sanitizing"""
