"""
URL configuration for the ingestion API.
"""

from django.urls import path

from . import views

urlpatterns = [
    path("api/health/", views.health, name="health"),
    path("api/statements/parse/", views.parse_statement_window, name="statement_parse"),
    path("api/invoices/parse/", views.parse_invoices, name="invoice_parse"),
]
