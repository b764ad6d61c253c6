"""
Domain Layer
============

Contains the core lending logic, entities, value objects, events and domain services.
This layer is independent of the HTTP surface and of deployment configuration.
"""
