"""
care_ingestion -- migration tooling for moving an existing care home's
records into the back office.

Flow: read a source file (CSV / JSON / XLSX) -> map columns to entity
fields -> stage one record per row -> validate -> promote valid records
through the owning module services.  A promoted batch can be rolled back.
"""
