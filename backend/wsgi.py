# backend/wsgi.py
from settlement import create_app

app = create_app()
