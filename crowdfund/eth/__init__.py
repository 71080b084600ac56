"""Chain access: addresses, deposit address derivation, balances and the chain state adapter."""
