"""
Collaborator services: dataset description stores and restoring persisted
views.
"""
