# backend/wsgi.py
from herbtrace import create_app

app = create_app()
