"""
Celery tasks for the batch jobs; see the importer package docstring
"""
