"""
Fila durável de posições pendentes do relay (lado do dispositivo).

Posições que não puderam ser enviadas ficam num arquivo SQLite local até que o
envio funcione ou que o limite de tentativas seja atingido. Cada entrada guarda o
token usado na captura: se o token da sessão mudar, as posições antigas continuam
sendo enviadas com o token da sua própria coleta.
"""

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import List, Optional

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS posicoes_pendentes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    coleta_id TEXT NOT NULL,
    token TEXT,
    payload TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    tentativas INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_pendentes_coleta ON posicoes_pendentes(coleta_id);
CREATE INDEX IF NOT EXISTS idx_pendentes_timestamp ON posicoes_pendentes(timestamp);
"""


class FilaPosicoes:
    """Fila SQLite de posições pendentes, segura para uso entre threads (uma conexão + lock)."""

    def __init__(self, caminho: str = ':memory:'):
        self.caminho = caminho
        if caminho != ':memory:':
            pasta = os.path.dirname(os.path.abspath(caminho))
            os.makedirs(pasta, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(caminho, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        logger.debug("Fila de posições aberta em %s", caminho)

    def adicionar(self, dados: dict, token: Optional[str] = None) -> int:
        """Enfileira uma posição (tentativas = 0). Retorna o id da entrada."""
        coleta_id = str(dados.get('coletaId') or dados.get('coleta_id') or '')
        if not coleta_id:
            raise ValueError("Posição sem coletaId não pode ser enfileirada")
        timestamp = dados.get('timestamp') or datetime.now(timezone.utc).isoformat()
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO posicoes_pendentes (coleta_id, token, payload, timestamp, tentativas) "
                "VALUES (?, ?, ?, ?, 0)",
                (coleta_id, token, json.dumps(dados), timestamp),
            )
            self._conn.commit()
            entrada_id = cur.lastrowid
        logger.info("Posição salva na fila para envio posterior (coleta %s)", coleta_id)
        return entrada_id

    def pendentes(self, coleta_id: str, limite: int = 10) -> List[dict]:
        """Entradas da coleta, mais antigas primeiro."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, coleta_id, token, payload, timestamp, tentativas "
                "FROM posicoes_pendentes WHERE coleta_id = ? ORDER BY timestamp, id LIMIT ?",
                (str(coleta_id), int(limite)),
            ).fetchall()
        return [
            {
                'id': row['id'],
                'coleta_id': row['coleta_id'],
                'token': row['token'],
                'dados': json.loads(row['payload']),
                'timestamp': row['timestamp'],
                'tentativas': row['tentativas'],
            }
            for row in rows
        ]

    def remover(self, entrada_id: int) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM posicoes_pendentes WHERE id = ?", (entrada_id,))
            self._conn.commit()
        return cur.rowcount > 0

    def incrementar_tentativas(self, entrada_id: int) -> int:
        """Soma uma tentativa e devolve o novo total (0 se a entrada não existe mais)."""
        with self._lock:
            self._conn.execute(
                "UPDATE posicoes_pendentes SET tentativas = tentativas + 1 WHERE id = ?", (entrada_id,)
            )
            self._conn.commit()
            row = self._conn.execute(
                "SELECT tentativas FROM posicoes_pendentes WHERE id = ?", (entrada_id,)
            ).fetchone()
        return row['tentativas'] if row else 0

    def contar(self, coleta_id: Optional[str] = None) -> int:
        with self._lock:
            if coleta_id is None:
                row = self._conn.execute("SELECT COUNT(*) AS n FROM posicoes_pendentes").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) AS n FROM posicoes_pendentes WHERE coleta_id = ?", (str(coleta_id),)
                ).fetchone()
        return row['n']

    def limpar(self, coleta_id: Optional[str] = None) -> int:
        """Remove todas as entradas (ou só as da coleta). Retorna quantas saíram."""
        with self._lock:
            if coleta_id is None:
                cur = self._conn.execute("DELETE FROM posicoes_pendentes")
            else:
                cur = self._conn.execute("DELETE FROM posicoes_pendentes WHERE coleta_id = ?", (str(coleta_id),))
            self._conn.commit()
        return cur.rowcount

    def fechar(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.fechar()
