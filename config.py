import os
from dotenv import load_dotenv

# 1. Raiz do projeto de forma absoluta
basedir = os.path.abspath(os.path.dirname(__file__))

# Carrega as variáveis do arquivo .env
load_dotenv(os.path.join(basedir, '.env'))

# Em produção, exige SECRET_KEY forte (não usar o valor de desenvolvimento)
_dev_secret = 'dev-secret-key-change-in-production'
_secret = os.getenv('SECRET_KEY') or _dev_secret
_env = (os.getenv('FLASK_ENV') or os.getenv('ENV') or 'development').lower()
if _env == 'production' and (not os.getenv('SECRET_KEY') or _secret == _dev_secret):
    raise ValueError(
        "Em produção, defina SECRET_KEY no ambiente com um valor forte e único. "
        "Não use o valor padrão de desenvolvimento."
    )


class Config:
    """Configuração base da aplicação"""
    SECRET_KEY = _secret
    ENV_NAME = _env

    # 2. Supabase (service key: o backend fala com o banco em nome dos usuários)
    SUPABASE_URL = os.getenv('SUPABASE_URL', '').strip()
    SUPABASE_SERVICE_KEY = (
        os.getenv('SUPABASE_SERVICE_KEY') or os.getenv('SUPABASE_SERVICE_ROLE_KEY') or ''
    ).strip()

    # 3. Rastreamento GPS
    # Chave Fernet dos tokens de rastreamento. Gere com: python scripts/gerar_chave_rastreamento.py
    # Sem chave, em desenvolvimento ela é derivada da SECRET_KEY (intranet/services/tokens.py).
    RASTREAMENTO_TOKEN_KEY = os.getenv('RASTREAMENTO_TOKEN_KEY', '').strip()
    RASTREAMENTO_TOKEN_TTL = int(os.getenv('RASTREAMENTO_TOKEN_TTL', 12 * 60 * 60))  # 12 horas
    RASTREAMENTO_INTERVALO_ENVIO = int(os.getenv('RASTREAMENTO_INTERVALO_ENVIO', 120))  # 2 minutos
    RASTREAMENTO_MAX_TENTATIVAS = int(os.getenv('RASTREAMENTO_MAX_TENTATIVAS', 5))
    RASTREAMENTO_LOTE_PENDENTES = int(os.getenv('RASTREAMENTO_LOTE_PENDENTES', 10))
    RASTREAMENTO_FILA_PATH = os.getenv(
        'RASTREAMENTO_FILA_PATH', os.path.join(basedir, 'instance', 'rastreamento-fila.db')
    )

    # 4. Rate Limiting (limite de requisições por janela de tempo)
    # Em desenvolvimento: desativado para melhor UX
    RATELIMIT_ENABLED = _env == 'production'
    RATELIMIT_DEFAULT = "200 per hour, 2000 per day"
    # Redis em produção: defina REDIS_URL para rate limit e cache compartilhados entre workers
    _redis_url = os.getenv('REDIS_URL', '').strip()
    RATELIMIT_STORAGE_URI = _redis_url or 'memory://'

    # 5. Segurança CSRF (o envio de posição usa token Bearer e fica isento)
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None

    # 6. Session Security
    PERMANENT_SESSION_LIFETIME = 86400  # 24 horas em segundos
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'True') == 'True'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    # URL pública da intranet; quando definida, POSTs de sessão exigem Origin/Referer compatível
    APP_BASE_URL = os.getenv('APP_BASE_URL', '').strip()

    # 7. Cache: TTL em segundos por tipo de dado
    CACHE_TTLS = {
        'usuarios': 600,
        'motoristas': 300,
        'coletas': 300,
        'posicoes': 60,
        'default': 300,
    }

    # Logging: nível (DEBUG, INFO, WARNING, ERROR). Em produção use INFO ou WARNING.
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    # Rotação do arquivo de log: tamanho máximo por arquivo (bytes) e número de backups
    LOG_MAX_BYTES = int(os.getenv('LOG_MAX_BYTES', 5 * 1024 * 1024))  # 5 MB
    LOG_BACKUP_COUNT = int(os.getenv('LOG_BACKUP_COUNT', 5))
    # Requisições acima deste tempo (ms) são registradas como lentas
    SLOW_REQUEST_MS = int(os.getenv('SLOW_REQUEST_MS', 1000))
