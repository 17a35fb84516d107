from flask import Flask, session, request, jsonify, g
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from config import Config
import logging
import time
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger
from urllib.parse import urlparse
import os

# Rotas POST de sessão que devem validar Origin/Referer quando APP_BASE_URL estiver definido.
# O envio de posição não entra aqui: vem do dispositivo, autenticado por token.
_POST_ORIGIN_CHECK_PREFIXES = (
    '/api/logout',
    '/api/rastreamento/coletas/',
)

# Inatividade máxima da sessão (segundos)
_LIMITE_INATIVIDADE = 900


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Inicializa CSRF Protection
    csrf = CSRFProtect(app)

    # Rate Limiting (limiter definido em intranet.limiter, usado pelos blueprints)
    from intranet.limiter import limiter
    limiter.init_app(app)

    # Configura Logging Estruturado (com rotação e nível configurável)
    _configurar_logging(app)

    # Log de cada requisição (duração, status) e alerta de requisição lenta.
    # Registrado antes dos demais before_request para medir também as respostas antecipadas.
    _configurar_log_requisicoes(app)

    # Inicializa Flask-Login
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from intranet.models_usuario import Usuario
        return Usuario.get_by_id(user_id)

    # API pura: sem login retorna 401 JSON em vez de redirect
    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'sucesso': False, 'requer_login': True, 'erro': 'Login necessário'}), 401

    # Importa e registra as rotas
    from intranet.routes import main, enviar_posicao
    csrf.exempt(enviar_posicao)
    app.register_blueprint(main)

    # Segurança: headers e validação Origin/Referer em POST de sessão
    _configurar_seguranca(app)

    # Timeout de inatividade (15 minutos)
    _configurar_timeout_sessao(app)

    # Erros sempre em JSON
    _configurar_erros(app)

    return app


def _configurar_erros(app: Flask) -> None:
    """Respostas JSON para 404, 405, 500 e exceções da aplicação não tratadas nas rotas."""
    from intranet.exceptions import IntranetError
    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def csrf_invalido(e):
        app.logger.warning(f"[CSRF] Token ausente ou inválido em {request.path}. IP: {request.remote_addr}",
                           extra={'categoria': 'seguranca'})
        return jsonify({'sucesso': False, 'erro': 'Token CSRF ausente ou inválido'}), 400

    @app.errorhandler(404)
    def rota_nao_encontrada(e):
        return jsonify({'erro': 'Rota não encontrada', 'path': request.path}), 404

    @app.errorhandler(405)
    def metodo_nao_permitido(e):
        return jsonify({'erro': 'Método não permitido', 'path': request.path}), 405

    @app.errorhandler(429)
    def limite_excedido(e):
        app.logger.warning(f"Rate limit excedido em {request.path}. IP: {request.remote_addr}",
                           extra={'categoria': 'seguranca'})
        return jsonify({'sucesso': False, 'erro': 'Muitas requisições. Aguarde e tente novamente.'}), 429

    @app.errorhandler(IntranetError)
    def erro_aplicacao(e):
        if e.status_code >= 500:
            app.logger.error(f"Erro da aplicação em {request.path}: {e}")
        return jsonify({'sucesso': False, 'erro': str(e)}), e.status_code

    @app.errorhandler(500)
    def erro_interno(e):
        app.logger.error(f"Erro não tratado em {request.path}: {e}")
        return jsonify({'sucesso': False, 'erro': 'Erro interno do servidor'}), 500


def _configurar_seguranca(app: Flask) -> None:
    """
    Configura headers de segurança e validação Origin/Referer em POST sensíveis.

    A validação é ativada quando APP_BASE_URL está definida em config.
    Requisições com token Bearer (dispositivos) não passam por ela.
    """
    from flask import current_app

    @app.after_request
    def _adicionar_headers_seguranca(response):
        """Adiciona headers de segurança a todas as respostas."""
        response.headers['X-Content-Type-Options'] = 'nosniff'  # Impede MIME sniffing
        response.headers['X-Frame-Options'] = 'SAMEORIGIN'      # Proteção contra clickjacking
        if request.is_secure and current_app.config.get('ENV_NAME') == 'production':
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response

    @app.before_request
    def _validar_origin_referer():
        base_url = (current_app.config.get('APP_BASE_URL') or '').strip()
        if not base_url or request.method != 'POST':
            return None
        if not request.path.startswith(_POST_ORIGIN_CHECK_PREFIXES):
            return None

        base_parsed = urlparse(base_url)
        base_origin = f"{base_parsed.scheme or 'https'}://{base_parsed.netloc}".lower()

        origin = (request.headers.get('Origin', '') or request.headers.get('Referer', '')).strip().lower()
        if not origin:
            app.logger.warning(
                f"[CSRF] POST {request.path} sem Origin/Referer. IP: {request.remote_addr}",
                extra={'categoria': 'seguranca'},
            )
            return jsonify({'sucesso': False, 'erro': 'Origem não informada'}), 403

        req_parsed = urlparse(origin)
        req_origin = f"{req_parsed.scheme}://{req_parsed.netloc}".lower()
        if req_origin != base_origin:
            app.logger.warning(
                f"[CSRF] POST {request.path} de origem não autorizada. "
                f"Origem: {req_origin}, Autorizada: {base_origin}. IP: {request.remote_addr}",
                extra={'categoria': 'seguranca'},
            )
            return jsonify({'sucesso': False, 'erro': 'Origem não autorizada'}), 403
        return None


def _configurar_timeout_sessao(app: Flask) -> None:
    """Configura logout automático por inatividade de sessão (15 minutos)"""
    from flask_login import current_user, logout_user

    @app.before_request
    def checar_inatividade():
        if request.endpoint and request.endpoint.startswith('static'):
            return None

        if current_user.is_authenticated:
            agora = time.time()
            ultima_atividade = session.get('last_activity')

            if ultima_atividade is not None and (agora - ultima_atividade > _LIMITE_INATIVIDADE):
                app.logger.info(f"Sessão expirada por inatividade: {current_user.email}",
                                extra={'categoria': 'auth'})
                logout_user()
                session.clear()
                return jsonify({
                    'sucesso': False,
                    'requer_login': True,
                    'erro': 'Sua sessão expirou por inatividade. Faça login novamente.',
                }), 401

            session['last_activity'] = agora


def _configurar_log_requisicoes(app: Flask) -> None:
    """Registra método, rota, status e duração de cada requisição; avisa quando passar de SLOW_REQUEST_MS."""

    @app.before_request
    def _marcar_inicio():
        g.inicio_requisicao = time.monotonic()

    @app.after_request
    def _registrar_requisicao(response):
        inicio = g.pop('inicio_requisicao', None)
        if inicio is None:
            return response
        duracao_ms = round((time.monotonic() - inicio) * 1000, 1)
        dados = {
            'metodo': request.method,
            'path': request.path,
            'status': response.status_code,
            'duracao_ms': duracao_ms,
            'user_agent': request.headers.get('User-Agent', ''),
            'ip': request.remote_addr,
        }
        if response.status_code >= 400:
            app.logger.warning("Requisição com erro", extra={'categoria': 'operacao', **dados})
        else:
            app.logger.debug("Requisição concluída", extra={'categoria': 'operacao', **dados})
        if duracao_ms > app.config.get('SLOW_REQUEST_MS', 1000):
            app.logger.warning(
                f"Requisição lenta: {request.method} {request.path} - {duracao_ms}ms",
                extra={'categoria': 'desempenho', **dados},
            )
        return response


def _configurar_logging(app: Flask) -> None:
    """Configura logging estruturado em JSON com rotação e nível configurável (LOG_LEVEL)."""
    app.logger.handlers.clear()

    basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    log_dir = os.path.join(basedir, 'logs')
    os.makedirs(log_dir, exist_ok=True)

    log_level_name = app.config.get('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    app.logger.setLevel(log_level)

    max_bytes = app.config.get('LOG_MAX_BYTES', 5 * 1024 * 1024)
    backup_count = app.config.get('LOG_BACKUP_COUNT', 5)
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'intranet.log'),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8',
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(jsonlogger.JsonFormatter(
        '%(asctime)s %(levelname)s %(name)s %(message)s',
        rename_fields={'levelname': 'level', 'asctime': 'timestamp'},
        static_fields={'service': 'intranet-app'},
    ))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    ))

    # app.logger é o logger "intranet": os loggers dos módulos (intranet.*) propagam para ele
    app.logger.addHandler(file_handler)
    app.logger.addHandler(console_handler)
