"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the transport layer.

Modules:
    - dispatch: Driver search, offer broadcast, assignment and offer expiry
"""
