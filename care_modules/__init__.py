"""
Care modules: vertical slices of the care-home back office.

Each module follows the same shape: ``models.py`` (frozen DTOs),
``orm.py`` (SQLAlchemy persistence with to_dto/from_dto), ``workflows.py``
(state machines), ``config.py`` where the module has tunables, and
``service.py`` (the public entry point that owns the transaction).
"""
