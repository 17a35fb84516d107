"""
Cache opcional com Redis para consultas ao Supabase.

- Se REDIS_URL estiver definida no ambiente: usa Redis (compartilhado entre workers).
- Senão: usa cache em memória (dict) por processo.

TTL por tipo de dado em Config.CACHE_TTLS (usuarios, motoristas, coletas, posicoes).
"""
import os
import re
import json
import time
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_redis_client = None
_memory_cache: dict = {}
_MEMORY_TTL: dict = {}  # key -> expires_at
_stats = {'hits': 0, 'misses': 0}

_TTLS_PADRAO = {'default': 300}


def _get_redis():
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    url = os.getenv('REDIS_URL', '').strip()
    if not url:
        return None
    try:
        import redis
        _redis_client = redis.from_url(url, decode_responses=True)
        _redis_client.ping()
        logger.info("Cache Redis conectado")
        return _redis_client
    except Exception as e:
        logger.warning("Redis não disponível, usando cache em memória: %s", e)
        return None


def _ttl_do_tipo(tipo: str) -> int:
    try:
        from flask import current_app
        ttls = current_app.config.get('CACHE_TTLS') or _TTLS_PADRAO
    except RuntimeError:
        ttls = _TTLS_PADRAO
    return int(ttls.get(tipo) or ttls.get('default') or 300)


def _registrar(encontrado: bool) -> None:
    _stats['hits' if encontrado else 'misses'] += 1


def cache_get(key: str) -> Optional[Any]:
    """Obtém valor do cache. Retorna None se não existir ou estiver expirado."""
    r = _get_redis()
    if r:
        try:
            val = r.get(key)
            _registrar(val is not None)
            return json.loads(val) if val else None
        except Exception as e:
            logger.debug("Cache get falhou: %s", e)
            return None
    # Memória
    if key in _MEMORY_TTL and time.time() < _MEMORY_TTL[key]:
        _registrar(True)
        return _memory_cache.get(key)
    if key in _memory_cache:
        del _memory_cache[key]
        del _MEMORY_TTL[key]
    _registrar(False)
    return None


def cache_set(key: str, value: Any, ttl_seconds: int = 300) -> None:
    """Grava valor no cache com TTL em segundos."""
    r = _get_redis()
    if r:
        try:
            r.setex(key, ttl_seconds, json.dumps(value, default=str))
        except Exception as e:
            logger.debug("Cache set falhou: %s", e)
        return
    _memory_cache[key] = value
    _MEMORY_TTL[key] = time.time() + ttl_seconds


def cache_set_tipo(key: str, value: Any, tipo: str = 'default') -> None:
    """Grava valor com o TTL configurado para o tipo de dado."""
    cache_set(key, value, _ttl_do_tipo(tipo))


def cache_delete(key: str) -> None:
    """Remove uma chave do cache."""
    r = _get_redis()
    if r:
        try:
            r.delete(key)
        except Exception as e:
            logger.debug("Cache delete falhou: %s", e)
        return
    _memory_cache.pop(key, None)
    _MEMORY_TTL.pop(key, None)


def invalidar(padrao: Optional[str] = None) -> int:
    """
    Remove as chaves que casam com a regex `padrao`. Sem padrão, limpa todo o cache.
    Retorna quantas chaves foram removidas.
    """
    r = _get_redis()
    if r:
        try:
            chaves = list(r.scan_iter())
            alvo = [k for k in chaves if not padrao or re.search(padrao, k)]
            if alvo:
                r.delete(*alvo)
            return len(alvo)
        except Exception as e:
            logger.debug("Cache invalidar falhou: %s", e)
            return 0
    alvo = [k for k in list(_memory_cache) if not padrao or re.search(padrao, k)]
    for k in alvo:
        _memory_cache.pop(k, None)
        _MEMORY_TTL.pop(k, None)
    return len(alvo)


def cached_query(query_fn: Callable[[], Any], key: str, tipo: str = 'default') -> Any:
    """Executa query_fn só quando a chave não está em cache; resultados None não são guardados."""
    cached = cache_get(key)
    if cached is not None:
        return cached
    resultado = query_fn()
    if resultado is not None:
        cache_set_tipo(key, resultado, tipo)
    return resultado


def estatisticas() -> dict:
    """Retorna chaves, hits, misses e taxa de acerto (%) do cache."""
    r = _get_redis()
    if r:
        try:
            chaves = r.dbsize()
        except Exception:
            chaves = None
    else:
        chaves = len(_memory_cache)
    total = _stats['hits'] + _stats['misses']
    return {
        'backend': 'redis' if r else 'memoria',
        'keys': chaves,
        'hits': _stats['hits'],
        'misses': _stats['misses'],
        'hit_rate': round(_stats['hits'] / total * 100, 2) if total else 0.0,
    }


def resetar_estatisticas() -> None:
    _stats['hits'] = 0
    _stats['misses'] = 0


def is_redis_available() -> bool:
    """Retorna True se o Redis está em uso."""
    return _get_redis() is not None
