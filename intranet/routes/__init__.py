"""
Rotas organizadas em módulos. Blueprint único 'main' para manter url_for('main.xxx').
"""
from flask import Blueprint

main = Blueprint('main', __name__)

# Importa os módulos para registrar as rotas no blueprint
from intranet.routes import auth          # noqa: E402, F401
from intranet.routes import rastreamento  # noqa: E402, F401
from intranet.routes import api           # noqa: E402, F401

# Exporta a view para CSRF exempt no create_app (autenticação por token Bearer)
from intranet.routes.rastreamento import enviar_posicao  # noqa: E402, F401

__all__ = ['main', 'enviar_posicao']
