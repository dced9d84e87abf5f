"""Symmetric encryption for secrets at rest"""
