"""
Rate limiter compartilhado entre blueprints.

Dispositivos de motoristas costumam sair pelo mesmo IP da operadora (CGNAT), então
o envio de posição é limitado por token de rastreamento e não por endereço.
Em produção defina REDIS_URL para compartilhar os contadores entre workers.
"""
import hashlib

from flask import request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["2000 per day", "200 per hour"],
)


def chave_por_token() -> str:
    """Chave de rate limit: hash do token Bearer ou, sem token, o IP remoto."""
    auth = request.headers.get('Authorization', '')
    if auth.lower().startswith('bearer ') and auth[7:].strip():
        return 'token:' + hashlib.sha256(auth[7:].strip().encode('utf-8')).hexdigest()[:32]
    return get_remote_address()
