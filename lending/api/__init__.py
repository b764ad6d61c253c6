"""
API Layer
=========

Thin HTTP surface over the lending engine.
"""
