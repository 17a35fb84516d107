"""
Gera uma chave Fernet para assinar/cifrar os tokens de rastreamento GPS.
Execute: python scripts/gerar_chave_rastreamento.py
Copie a linha gerada para o seu arquivo .env como RASTREAMENTO_TOKEN_KEY.
"""
from cryptography.fernet import Fernet


def main():
    key = Fernet.generate_key().decode("ascii")
    print("Adicione ao seu .env:")
    print(f"RASTREAMENTO_TOKEN_KEY={key}")
    print("\nTrocar a chave invalida todos os tokens já emitidos: os dispositivos")
    print("precisarão de um novo token (reiniciar o rastreamento da coleta).")


if __name__ == "__main__":
    main()
