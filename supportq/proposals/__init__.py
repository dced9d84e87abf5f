"""Proposal persistence and the human review/execute workflow"""
