#!/usr/bin/env python3
"""
Envia de uma vez as posições GPS que ficaram na fila local do relay.

Útil quando o dispositivo ficou sem conexão e o rastreamento já foi encerrado:
as posições ainda pendentes no arquivo SQLite são enviadas com o token gravado
junto de cada uma.

Uso (a partir da raiz do projeto):
    python scripts/enviar_pendentes.py --coleta 123 --url https://intranet.exemplo.com.br
    python scripts/enviar_pendentes.py --coleta 123 --status
    python scripts/enviar_pendentes.py --status                  # total de todas as coletas
    python scripts/enviar_pendentes.py --coleta 123 --url ... --fila /caminho/fila.db
"""

import argparse
import logging
import os
import sys

from termcolor import colored

# Adiciona a raiz do projeto ao path (script está em scripts/)
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config import Config
from intranet.relay import FilaPosicoes, RelayRastreamento

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Envia posições GPS pendentes da fila local do relay")
    parser.add_argument("--coleta", help="ID da coleta cujas posições serão enviadas")
    parser.add_argument("--url", default=os.getenv('APP_BASE_URL', ''), help="URL base da intranet")
    parser.add_argument("--fila", default=Config.RASTREAMENTO_FILA_PATH, help="Arquivo SQLite da fila")
    parser.add_argument("--status", action="store_true", help="Só mostra quantas posições estão pendentes")
    args = parser.parse_args(argv)

    if not os.path.exists(args.fila):
        print(colored(f"Fila não encontrada em {args.fila}. Nada a enviar.", "yellow"))
        return 0

    with FilaPosicoes(args.fila) as fila:
        if args.status:
            total = fila.contar(args.coleta)
            alvo = f"coleta {args.coleta}" if args.coleta else "todas as coletas"
            print(colored(f"{total} posição(ões) pendente(s) ({alvo})", "cyan"))
            return 0

        if not args.coleta or not args.url:
            parser.error("--coleta e --url são obrigatórios para enviar")

        relay = RelayRastreamento.from_config(Config, args.url, fila=fila)
        print(colored(f"Enviando posições pendentes da coleta {args.coleta}...", "cyan"))
        totais = {'enviadas': 0, 'falhas': 0, 'descartadas': 0}
        # Lotes até esvaziar a fila ou até um lote inteiro falhar
        while fila.contar(args.coleta):
            resultado = relay.enviar_posicoes_pendentes(args.coleta)
            for chave in totais:
                totais[chave] += resultado[chave]
            if not resultado['enviadas'] and not resultado['descartadas']:
                break

    print(colored(f"Enviadas: {totais['enviadas']}", "green"))
    if totais['falhas']:
        print(colored(f"Falhas: {totais['falhas']} (descartadas: {totais['descartadas']})", "red"))
    return 1 if totais['falhas'] and not totais['enviadas'] else 0


if __name__ == "__main__":
    sys.exit(main())
