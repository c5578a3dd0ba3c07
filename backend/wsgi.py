# backend/wsgi.py
from reqflow import create_app

app = create_app()
