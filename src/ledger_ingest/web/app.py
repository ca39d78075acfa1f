"""
Django application initialization.
"""

import os

SETTINGS_MODULE = "ledger_ingest.web.settings"


def _configure_environment(config_path: str = None, token: str = None) -> None:
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", SETTINGS_MODULE)
    # os.environ requires strings, so convert Path objects
    if config_path:
        os.environ["LEDGER_INGEST_CONFIG"] = str(config_path)
    if token:
        os.environ["LEDGER_INGEST_TOKEN"] = token


def get_wsgi_application(config_path: str = None, token: str = None):
    """
    Get the Django WSGI application configured with our settings.

    Args:
        config_path: Path to config.yaml (optional)
        token: Bearer token required by the API (optional)
    """
    _configure_environment(config_path, token)

    from django.core.wsgi import get_wsgi_application as django_wsgi

    return django_wsgi()


def run_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    config_path: str = None,
    token: str = None,
):
    """
    Run the Django development server.

    Args:
        host: Host to bind to
        port: Port to listen on
        config_path: Path to config.yaml
        token: Bearer token required by the API
    """
    _configure_environment(config_path, token)

    import django

    django.setup()

    from django.core.management import execute_from_command_line

    print(f"\n🌐 Starting ingestion API at http://{host}:{port}/")
    print(f"⚙️  Config: {os.environ.get('LEDGER_INGEST_CONFIG', 'config.yaml')}")
    print("\nPress Ctrl+C to stop.\n")

    execute_from_command_line(
        [
            "manage.py",
            "runserver",
            f"{host}:{port}",
            "--noreload",
        ]
    )
