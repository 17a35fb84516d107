"""
Entry point da Intranet de Logística.

Configura ambiente e inicia servidor Flask com segurança.
Debug é ativado apenas em desenvolvimento via variável de ambiente.
"""

import os
import logging
from intranet import create_app

logger = logging.getLogger(__name__)

app = create_app()

if __name__ == '__main__':
    # Padrão: False (seguro para produção)
    debug_mode = os.getenv('FLASK_ENV', 'production') == 'development'
    port = int(os.getenv('PORT', 5000))
    host = os.getenv('FLASK_HOST', '127.0.0.1' if debug_mode else 'localhost')

    logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)

    print(f"\n{'='*60}")
    print("Intranet Logística - Rastreamento de Coletas")
    print(f"{'='*60}")
    print(f"Ambiente: {'DESENVOLVIMENTO' if debug_mode else 'PRODUÇÃO'}")
    print(f"Host: {host}:{port}")
    print(f"Debug: {debug_mode}")
    print(f"{'='*60}\n")

    app.run(
        debug=debug_mode,
        host=host,
        port=port,
        use_reloader=debug_mode
    )
