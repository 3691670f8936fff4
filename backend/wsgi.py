# backend/wsgi.py
from branchledger import create_app

app = create_app()
