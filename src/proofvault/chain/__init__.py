"""Blockchain RPC collaborator."""

from proofvault.chain.rpc_client import AnchorRpc, JsonRpcAnchorClient, Receipt, parse_receipt

__all__ = ["AnchorRpc", "JsonRpcAnchorClient", "Receipt", "parse_receipt"]
