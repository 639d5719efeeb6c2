# backend/wsgi.py
from fitsuite import create_app

app = create_app()
