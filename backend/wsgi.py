# backend/wsgi.py
from shopledger import create_app

app = create_app()
