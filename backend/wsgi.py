# backend/wsgi.py
from rollstock import create_app

app = create_app()
