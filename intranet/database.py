"""
Inicialização e configuração do cliente Supabase.

Responsável por:
1. Criar o cliente Supabase (service key) com retry automático
2. Fornecer o cliente para toda a aplicação via get_db()
3. Verificar a conexão para o health check detalhado

A criação usa exponential backoff com até 3 tentativas (1s, 2s, 4s).
O cliente é criado na primeira chamada, não no import, para que testes e
scripts possam importar a aplicação sem credenciais.
"""

import os
import time
import logging
from typing import Optional, Tuple

from supabase import Client, create_client

from intranet.exceptions import SupabaseIndisponivelError

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def _credenciais() -> Tuple[str, str]:
    """Lê URL e service key do Flask config ou, fora do contexto de aplicação, do ambiente."""
    try:
        from flask import current_app
        url = current_app.config.get('SUPABASE_URL') or ''
        key = current_app.config.get('SUPABASE_SERVICE_KEY') or ''
    except RuntimeError:
        url = os.getenv('SUPABASE_URL', '')
        key = os.getenv('SUPABASE_SERVICE_KEY') or os.getenv('SUPABASE_SERVICE_ROLE_KEY') or ''
    return url.strip(), key.strip()


def _criar_cliente_com_retry(max_tentativas: int = 3, delay_inicial: float = 1.0) -> Client:
    """
    Cria o cliente Supabase com retry automático e exponential backoff.

    Raises:
        SupabaseIndisponivelError: credenciais ausentes ou todas as tentativas falharam.
    """
    url, key = _credenciais()
    if not url or not key:
        raise SupabaseIndisponivelError(
            "Supabase não configurado. Defina SUPABASE_URL e SUPABASE_SERVICE_KEY no .env"
        )

    for tentativa in range(1, max_tentativas + 1):
        try:
            logger.info(f"Tentativa {tentativa}/{max_tentativas} para criar cliente Supabase...")
            cliente = create_client(url, key)
            logger.info("Cliente Supabase criado com sucesso")
            return cliente
        except Exception as e:
            logger.warning(
                f"Tentativa {tentativa}/{max_tentativas} falhou: {type(e).__name__}: {e}"
            )
            if tentativa < max_tentativas:
                delay = delay_inicial * (2 ** (tentativa - 1))
                logger.info(f"Aguardando {delay}s antes de tentar novamente...")
                time.sleep(delay)
            else:
                logger.critical(
                    f"Todas as {max_tentativas} tentativas falharam. "
                    f"Supabase não foi inicializado. Verifique credenciais."
                )
                raise SupabaseIndisponivelError(f"Falha ao criar cliente Supabase: {e}") from e


def get_db() -> Client:
    """Retorna o cliente Supabase, criando-o na primeira chamada."""
    global _client
    if _client is None:
        _client = _criar_cliente_com_retry()
    return _client


def reset_db() -> None:
    """Descarta o cliente atual (usado em testes e após troca de credenciais)."""
    global _client
    _client = None


def verificar_conexao() -> Tuple[bool, Optional[str]]:
    """Faz uma consulta mínima em `usuarios`. Retorna (ok, mensagem de erro)."""
    try:
        get_db().table('usuarios').select('id').limit(1).execute()
        return True, None
    except Exception as e:
        logger.warning("Supabase não respondeu ao health check: %s", e)
        return False, str(e)
