"""Solana JSON-RPC access."""

from swapexec.rpc.client import LatestBlockhash, SignatureStatus, SolanaRpcClient, SOLANA_RPC

__all__ = ["SolanaRpcClient", "SignatureStatus", "LatestBlockhash", "SOLANA_RPC"]
