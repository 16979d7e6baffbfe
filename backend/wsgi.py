# backend/wsgi.py
from kasa import create_app

app = create_app()
