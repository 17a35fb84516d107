"""
Validação de dados recebidos pela API.

Centraliza regras de entrada:
- Posição GPS: coleta obrigatória, latitude/longitude numéricas e dentro da faixa,
  campos opcionais (precisão, velocidade, direção) numéricos e não negativos,
  timestamp opcional da captura (posições que ficaram na fila do dispositivo)
- Login: e-mail/usuário e senha obrigatórios
- Sanitização de textos livres
"""
import math
from datetime import datetime, timezone

CAMPOS_OPCIONAIS_POSICAO = ('precisao', 'velocidade', 'direcao')


def _numero(valor):
    """Converte para float finito. Retorna None se não for número (bool não conta)."""
    if valor is None or isinstance(valor, bool):
        return None
    try:
        numero = float(valor)
    except (TypeError, ValueError):
        return None
    return numero if math.isfinite(numero) else None


def _coleta_id(dados: dict):
    valor = dados.get('coletaId') or dados.get('coleta_id')
    return str(valor).strip() if valor is not None else ''


def validar_posicao(dados) -> list:
    """
    Valida o corpo de uma posição GPS antes de persistir.

    Args:
        dados: dict com coletaId (ou coleta_id), latitude, longitude e opcionalmente
               precisao (m), velocidade (km/h) e direcao (graus).

    Returns:
        Lista de mensagens de erro. Lista vazia indica que os dados são válidos.
    """
    if not isinstance(dados, dict) or not dados:
        return ["Corpo da requisição vazio ou inválido."]

    erros = []
    if not _coleta_id(dados):
        erros.append("coletaId é obrigatório.")

    latitude = _numero(dados.get('latitude'))
    longitude = _numero(dados.get('longitude'))
    if latitude is None:
        erros.append("latitude é obrigatória e deve ser numérica.")
    elif not -90 <= latitude <= 90:
        erros.append("latitude deve estar entre -90 e 90.")
    if longitude is None:
        erros.append("longitude é obrigatória e deve ser numérica.")
    elif not -180 <= longitude <= 180:
        erros.append("longitude deve estar entre -180 e 180.")

    for campo in CAMPOS_OPCIONAIS_POSICAO:
        bruto = dados.get(campo)
        if bruto is None:
            continue
        valor = _numero(bruto)
        if valor is None:
            erros.append(f"{campo} deve ser numérico.")
        elif valor < 0:
            erros.append(f"{campo} não pode ser negativo.")
        elif campo == 'direcao' and valor > 360:
            erros.append("direcao deve estar entre 0 e 360.")

    if dados.get('timestamp') is not None and _instante(dados.get('timestamp')) is None:
        erros.append("timestamp deve estar no formato ISO 8601.")

    return erros


def _instante(valor):
    """Converte texto ISO 8601 em datetime com fuso (UTC quando ausente). None se inválido."""
    if not isinstance(valor, str) or not valor.strip():
        return None
    try:
        dt = datetime.fromisoformat(valor.strip().replace('Z', '+00:00'))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def normalizar_posicao(dados: dict) -> dict:
    """Arredonda coordenadas (6 casas) e campos opcionais (2 casas). Pressupõe dados já validados."""
    normalizado = {
        'coleta_id': _coleta_id(dados),
        'latitude': round(_numero(dados['latitude']), 6),
        'longitude': round(_numero(dados['longitude']), 6),
    }
    for campo in CAMPOS_OPCIONAIS_POSICAO:
        valor = _numero(dados.get(campo))
        normalizado[campo] = round(valor, 2) if valor is not None else None
    instante = _instante(dados.get('timestamp'))
    normalizado['registrado_em'] = instante.isoformat() if instante else None
    return normalizado


def validar_login(dados) -> list:
    """Valida o corpo do login JSON (email ou usuario, e senha)."""
    if not isinstance(dados, dict):
        return ["Corpo da requisição vazio ou inválido."]
    erros = []
    email = dados.get('email') or dados.get('usuario')
    if not isinstance(email, str) or not email.strip():
        erros.append("O campo usuário é obrigatório.")
    senha = dados.get('senha')
    if not isinstance(senha, str) or not senha:
        erros.append("O campo senha é obrigatório.")
    return erros


def sanitizar_texto(valor, limite: int = 1000):
    """Remove espaços nas pontas e os caracteres < e >, limitando o tamanho. Não-strings passam intactos."""
    if not isinstance(valor, str):
        return valor
    return valor.strip().replace('<', '').replace('>', '')[:limite]
