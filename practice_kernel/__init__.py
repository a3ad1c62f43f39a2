"""
practice_kernel -- persistence, services and ambient infrastructure for
the recurring-work scheduler and billing pipeline.

Subpackages:
    db        engine, sessions and declarative base
    domain    enums, value objects, domain events and the clock
    models    ORM tables
    services  imperative shell: generators, trackers, posting, event bus
"""
