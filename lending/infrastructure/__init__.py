"""
Infrastructure Layer
====================

Configuration and logging setup for the lending service.
"""
