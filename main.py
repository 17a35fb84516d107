"""
Ponto de entrada para o servidor WSGI em produção:
  gunicorn -b :$PORT main:app
"""
from run import app  # noqa: F401
