"""Rotas de autenticação (JSON): login, logout e status da sessão."""
import logging
from flask import request, jsonify, session
from flask_login import login_user, logout_user, current_user, login_required
from flask_wtf.csrf import generate_csrf
from intranet.routes import main
from intranet.limiter import limiter
from intranet.models_usuario import Usuario
from intranet.services.validators import validar_login, sanitizar_texto

logger = logging.getLogger(__name__)


@main.route('/api/login', methods=['POST'])
@limiter.limit("5 per minute")
def login():
    """Valida credenciais e cria a sessão. Aceita {email, senha} ou {usuario, senha}."""
    dados = request.get_json(silent=True)
    erros = validar_login(dados)
    if erros:
        return jsonify({'sucesso': False, 'erro': 'Dados inválidos', 'detalhes': erros}), 400

    email = sanitizar_texto(dados.get('email') or dados.get('usuario'), limite=254).lower()
    senha = dados['senha']

    usuario = Usuario.get_by_email(email)
    if usuario and usuario.is_active and usuario.check_password(senha):
        session.pop('last_activity', None)
        login_user(usuario, remember=False)
        logger.info(f"Login bem-sucedido: {usuario.email} (Perfil: {usuario.perfil})",
                    extra={'categoria': 'auth'})
        return jsonify({'sucesso': True, 'usuario': usuario.to_public_dict()}), 200

    logger.warning(f"Falha de autenticação para {email}. IP: {request.remote_addr}",
                   extra={'categoria': 'seguranca'})
    return jsonify({'sucesso': False, 'erro': 'Credenciais inválidas'}), 401


@main.route('/api/logout', methods=['POST'])
@login_required
def logout():
    """Finaliza a sessão do usuário."""
    email = current_user.email
    logout_user()
    session.clear()
    logger.info(f"Logout: {email}", extra={'categoria': 'auth'})
    return jsonify({'sucesso': True}), 200


@main.route('/api/auth/status', methods=['GET'])
def auth_status():
    """Informa se há sessão ativa e quem é o usuário."""
    if current_user.is_authenticated:
        return jsonify({'autenticado': True, 'usuario': current_user.to_public_dict()}), 200
    return jsonify({'autenticado': False, 'usuario': None}), 200


@main.route('/api/csrf-token', methods=['GET'])
def csrf_token():
    """Token CSRF para clientes JSON (enviar no header X-CSRFToken em POSTs de sessão)."""
    return jsonify({'csrf_token': generate_csrf()}), 200
