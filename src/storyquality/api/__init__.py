"""
HTTP API for the User Story Quality Assistant.

Routes live in ``routes`` and are attached by ``storyquality.app.create_app``.
"""
