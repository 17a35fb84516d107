"""
Utilitário para retry de operações Supabase com backoff exponencial.
Implementa padrão de retry automático para falhas de conexão e indisponibilidade.
"""

import time
import logging
from typing import TypeVar, Callable, Any
from functools import wraps

import httpx
from postgrest.exceptions import APIError

from intranet.exceptions import SupabaseIndisponivelError

logger = logging.getLogger(__name__)

# Falhas de transporte que são retentáveis
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
)

F = TypeVar('F', bound=Callable[..., Any])


def falha_transitoria(e: Exception) -> bool:
    """Erros de transporte e respostas 5xx do PostgREST podem ser repetidos."""
    if isinstance(e, RETRYABLE_EXCEPTIONS):
        return True
    if isinstance(e, APIError):
        codigo = str(getattr(e, 'code', '') or '')
        return codigo.isdigit() and codigo.startswith('5')
    return False


def supabase_retry(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 32.0,
    exponential_base: float = 2.0
) -> Callable[[F], F]:
    """
    Decorator para retry automático em operações Supabase com backoff exponencial.

    Esgotadas as tentativas de uma falha transitória, levanta
    SupabaseIndisponivelError (503) encadeada ao último erro.

    Args:
        max_retries: Número máximo de tentativas (incluindo a primeira)
        initial_delay: Delay inicial em segundos
        max_delay: Delay máximo em segundos
        exponential_base: Multiplicador para backoff exponencial (padrão: 2.0)

    Exemplo:
        @supabase_retry(max_retries=3)
        def salvar_posicao(dados):
            get_db().table('rastreamento_posicoes').insert(dados).execute()
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            delay = initial_delay

            for attempt in range(max_retries):
                try:
                    logger.debug(f"Supabase operation '{func.__name__}' - attempt {attempt + 1}/{max_retries}")
                    return func(*args, **kwargs)
                except Exception as e:
                    if not falha_transitoria(e):
                        # Exceções não-retentáveis são relançadas imediatamente
                        logger.error(f"Supabase operation '{func.__name__}' failed with non-retryable error: {e}")
                        raise
                    if attempt < max_retries - 1:
                        logger.warning(
                            f"Supabase operation '{func.__name__}' failed (attempt {attempt + 1}/{max_retries}): "
                            f"{type(e).__name__}. Retrying in {delay:.1f}s..."
                        )
                        time.sleep(delay)
                        delay = min(delay * exponential_base, max_delay)
                    else:
                        logger.error(
                            f"Supabase operation '{func.__name__}' failed after {max_retries} attempts: {e}"
                        )
                        raise SupabaseIndisponivelError(
                            f"Banco de dados indisponível após {max_retries} tentativas"
                        ) from e

        return wrapper

    return decorator


def execute_with_retry(
    func: Callable,
    *args,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    **kwargs
) -> Any:
    """
    Executa uma função com retry (alternativa à decorator).

    Exemplo:
        resultado = execute_with_retry(
            get_db().table('coletas').update({'rastreamento_ativo': False}).eq('id', coleta_id).execute,
            max_retries=3
        )
    """
    decorated_func = supabase_retry(max_retries=max_retries, initial_delay=initial_delay)(
        lambda: func(*args, **kwargs)
    )
    return decorated_func()
