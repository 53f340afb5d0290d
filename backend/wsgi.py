# backend/wsgi.py
from tienda import create_app

app = create_app()
