"""
Pneuma - On-chain interaction layer for the Astrix SDK.

Provides the JSON-RPC chain connection, ABI helpers, the block monitor and
the transaction lifecycle driver.

Uses httpx + eth-account + eth-abi instead of the heavyweight web3.py.
"""
