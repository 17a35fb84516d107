"""
Tokens de rastreamento GPS.

Cada coleta em rastreamento recebe um token que o dispositivo do motorista envia em
`Authorization: Bearer <token>`. O token é um payload Fernet (AES-128-CBC + HMAC-SHA256)
com coleta_id, motorista_id e o instante de emissão; a validade é conferida pelo
timestamp embutido no próprio Fernet (RASTREAMENTO_TOKEN_TTL).

A chave vem de RASTREAMENTO_TOKEN_KEY. Sem ela, fora de produção, a chave é derivada
da SECRET_KEY para que o ambiente de desenvolvimento funcione sem configuração extra.
"""

import base64
import hashlib
import json
import logging
import time
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app

from intranet.exceptions import TokenRastreamentoInvalidoError

logger = logging.getLogger(__name__)


def _get_fernet() -> Fernet:
    """Instância Fernet a partir da configuração da aplicação atual."""
    key_b64 = (current_app.config.get('RASTREAMENTO_TOKEN_KEY') or '').strip()
    if not key_b64:
        if current_app.config.get('ENV_NAME') == 'production':
            raise RuntimeError("Defina RASTREAMENTO_TOKEN_KEY em produção.")
        segredo = str(current_app.config.get('SECRET_KEY') or '').encode('utf-8')
        key_b64 = base64.urlsafe_b64encode(hashlib.sha256(segredo).digest()).decode('ascii')
    return Fernet(key_b64.encode('ascii'))


def gerar_token(coleta_id: str, motorista_id: Optional[str] = None) -> str:
    """Gera o token de rastreamento de uma coleta."""
    payload = {
        'coleta_id': str(coleta_id),
        'motorista_id': str(motorista_id) if motorista_id else None,
        'emitido_em': int(time.time()),
    }
    token = _get_fernet().encrypt(json.dumps(payload).encode('utf-8')).decode('ascii')
    logger.info("Token de rastreamento emitido para coleta %s", coleta_id,
                extra={'categoria': 'auth'})
    return token


def validar_token(token: Optional[str]) -> dict:
    """
    Valida o token e devolve o payload.

    Raises:
        TokenRastreamentoInvalidoError: token ausente, adulterado, de outra chave ou expirado.
    """
    if not token or not token.strip():
        raise TokenRastreamentoInvalidoError("Token de rastreamento não informado")
    ttl = int(current_app.config.get('RASTREAMENTO_TOKEN_TTL') or 0) or None
    try:
        bruto = _get_fernet().decrypt(token.strip().encode('ascii'), ttl=ttl)
        payload = json.loads(bruto.decode('utf-8'))
    except (InvalidToken, UnicodeError, ValueError) as e:
        logger.warning("Token de rastreamento rejeitado: %s", type(e).__name__,
                       extra={'categoria': 'seguranca'})
        raise TokenRastreamentoInvalidoError("Token de rastreamento inválido ou expirado") from e
    if not isinstance(payload, dict) or not payload.get('coleta_id'):
        raise TokenRastreamentoInvalidoError("Token de rastreamento sem coleta")
    return payload


def extrair_bearer(header: Optional[str]) -> Optional[str]:
    """Extrai o token de um header `Authorization: Bearer <token>`."""
    if not header:
        return None
    partes = header.strip().split(None, 1)
    if len(partes) != 2 or partes[0].lower() != 'bearer':
        return None
    return partes[1].strip() or None
