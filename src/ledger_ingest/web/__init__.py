"""
Django application hosting the window endpoint and invoice parsing API.
"""
