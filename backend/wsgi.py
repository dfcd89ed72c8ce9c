# Overview: WSGI entry point; also the FLASK_APP target for the CLI.

from stockrun import create_app

app = create_app()
