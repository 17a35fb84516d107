"""Relay de posições GPS do dispositivo do motorista: fila local durável + envio periódico."""
from intranet.relay.fila import FilaPosicoes
from intranet.relay.relay import RelayRastreamento

__all__ = ['FilaPosicoes', 'RelayRastreamento']
