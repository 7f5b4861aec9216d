"""Application package for the study listing form service.

This package backs the open-study and study-edit pages: form drafts,
field validation, the tag editor, image staging and the submission
pipelines that talk to the backend study API and object storage.
"""
